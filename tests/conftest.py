from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Optional, Sequence

import pytest

from sleepnumber_stats.config import (
    CollectorConfig,
    HealthConfig,
    InfluxConfig,
    LoggingConfig,
    PollingConfig,
    SleepIQConfig,
)
from sleepnumber_stats.core import (
    Bed,
    BedFamilyStatus,
    FootWarmerState,
    FoundationState,
    MetricPoint,
    SleeperSide,
    SleepIQSession,
)


def make_bed(bed_id: str, name: Optional[str] = None) -> Bed:
    return Bed(
        bed_id=bed_id,
        size="KING",
        name=name or f"Bed {bed_id}",
        generation="360",
        model="P6",
    )


def make_family(bed_id: str, *, left_in_bed: bool = True) -> BedFamilyStatus:
    return BedFamilyStatus(
        bed_id=bed_id,
        left=SleeperSide(is_in_bed=left_in_bed, sleep_number=45, pressure=1200),
        right=SleeperSide(is_in_bed=False, sleep_number=60, pressure=900),
    )


class FakeSleepIQ:
    """In-memory SleepIQ adapter with scriptable failures."""

    def __init__(
        self,
        beds: Sequence[Bed] = (),
        family: Sequence[BedFamilyStatus] = (),
    ) -> None:
        self.beds = list(beds)
        self.family = list(family)
        self.calls: list[str] = []
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self.logins = 0
        self.closed = False
        self.hooks: dict[str, object] = {}

    def fail(self, operation: str, *errors: BaseException) -> None:
        self.failures[operation].extend(errors)

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        hook = self.hooks.get(operation)
        if callable(hook):
            hook()
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    async def login(self, username: str, password: str) -> SleepIQSession:
        self.logins += 1
        self._call("login")
        return SleepIQSession(key=f"key-{self.logins}", user_id="user-1")

    async def list_beds(self, session: SleepIQSession) -> list[Bed]:
        self._call("list_beds")
        return list(self.beds)

    async def family_status(self, session: SleepIQSession) -> list[BedFamilyStatus]:
        self._call("family_status")
        return list(self.family)

    async def foundation_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FoundationState:
        self._call("foundation_status")
        return FoundationState(
            type="Split Head",
            is_moving=False,
            current_position_preset_right="Flat",
            current_position_preset_left="Favorite",
            right_head_position=0,
            left_head_position=30,
            right_foot_position=0,
            left_foot_position=5,
        )

    async def foot_warmer_status(
        self, session: SleepIQSession, bed_id: str
    ) -> FootWarmerState:
        self._call("foot_warmer_status")
        return FootWarmerState(status_left=0, status_right=31)

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink:
    def __init__(self) -> None:
        self.points: list[MetricPoint] = []

    def write_point(self, point: MetricPoint) -> None:
        self.points.append(point)

    def measurements(self) -> list[str]:
        return [point.measurement for point in self.points]


class RecordingWriter:
    """Point writer that records batches and can be told to fail."""

    def __init__(self) -> None:
        self.batches: list[list[MetricPoint]] = []
        self.failures: list[BaseException] = []
        self.closed = False

    @property
    def points(self) -> list[MetricPoint]:
        return [point for batch in self.batches for point in batch]

    async def write(self, points: Sequence[MetricPoint]) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.batches.append(list(points))

    async def aclose(self) -> None:
        self.closed = True


def build_config(
    *,
    interval: float = 60.0,
    bucket: Optional[str] = "sleepnumber",
    database: Optional[str] = None,
    retention_policy: Optional[str] = None,
    batch_size: int = 5000,
    flush_interval: float = 30.0,
    shutdown_timeout: float = 2.0,
) -> CollectorConfig:
    return CollectorConfig(
        sleepiq=SleepIQConfig(username="sleeper@example.com", password="secret"),
        polling=PollingConfig(
            interval_seconds=interval, shutdown_timeout_seconds=shutdown_timeout
        ),
        influxdb=InfluxConfig(
            bucket=bucket,
            database=database,
            retention_policy=retention_policy,
            batch_size=batch_size,
            flush_interval_seconds=flush_interval,
        ),
        logging=LoggingConfig(),
        health=HealthConfig(),
        path=Path("sleepnumber-stats.cfg"),
    )


@pytest.fixture
def three_beds() -> list[Bed]:
    return [make_bed("bed-1"), make_bed("bed-2"), make_bed("bed-3")]


@pytest.fixture
def fake_sleepiq(three_beds) -> FakeSleepIQ:
    return FakeSleepIQ(
        beds=three_beds,
        family=[make_family("bed-1"), make_family("bed-3", left_in_bed=False)],
    )


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def config_factory():
    return build_config


@pytest.fixture
def bed_factory():
    return make_bed


@pytest.fixture
def family_factory():
    return make_family


@pytest.fixture
def sleepiq_factory():
    return FakeSleepIQ
