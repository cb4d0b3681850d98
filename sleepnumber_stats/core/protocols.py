"""Protocol definitions for the vendor client and metric delivery."""

from __future__ import annotations

from typing import Protocol, Sequence

from .models import (
    Bed,
    BedFamilyStatus,
    FootWarmerState,
    FoundationState,
    MetricPoint,
    SleepIQSession,
)


class SleepIQAdapter(Protocol):
    """Minimal contract for the SleepIQ HTTP API.

    Every query receives the session explicitly; implementations never keep
    credential state of their own.
    """

    async def login(self, username: str, password: str) -> SleepIQSession:
        """Authenticate and return a fresh session."""
        ...

    async def list_beds(self, session: SleepIQSession) -> list[Bed]:
        ...

    async def family_status(self, session: SleepIQSession) -> list[BedFamilyStatus]:
        ...

    async def foundation_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FoundationState:
        ...

    async def foot_warmer_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FootWarmerState:
        ...

    async def aclose(self) -> None:
        """Close any underlying resources."""
        ...


class PointWriter(Protocol):
    """Delivers a batch of points to the time-series store."""

    async def write(self, points: Sequence[MetricPoint]) -> None:
        """Write the batch, raising on any delivery failure."""
        ...

    async def aclose(self) -> None:
        ...


class MetricWriter(Protocol):
    """Producer-side view of the metric sink."""

    def write_point(self, point: MetricPoint) -> None:
        ...
