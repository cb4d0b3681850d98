"""Fixed-interval poll loop for SleepIQ bed state.

Design principles:
- Explicit state machine; transitions are a pure function of the current
  state and the outcome of the last operation
- Cycle length accounts for request latency
- A failed query abandons the rest of the cycle; the next cycle starts fresh
- Graceful stop between cycles, including from the sleep phase
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from ..core import MetricPoint, MetricWriter
from ..session import AuthenticationError, QueryError, SessionClient, SessionExpiredError
from .mapper import map_foot_warmer, map_foundation, map_sleepers, match_sleepers

LOGGER = logging.getLogger(__name__)


class PollState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    MAPPING = "mapping"
    DELIVERING = "delivering"
    SLEEPING = "sleeping"
    SHUTTING_DOWN = "shutting_down"


class PollEvent(str, Enum):
    START = "start"
    FETCHED = "fetched"
    MAPPED = "mapped"
    DELIVERED = "delivered"
    CYCLE_COMPLETE = "cycle_complete"
    QUERY_FAILED = "query_failed"
    SESSION_EXPIRED = "session_expired"
    AUTHENTICATED = "authenticated"
    LOGIN_FAILED = "login_failed"
    WOKE = "woke"
    STOP = "stop"


class CycleOutcome(str, Enum):
    COMPLETE = "complete"
    QUERY_FAILED = "query_failed"
    SESSION_RENEWED = "session_renewed"


class InvalidTransitionError(RuntimeError):
    """Raised when the scheduler receives an event its state cannot handle."""


_TRANSITIONS: dict[tuple[PollState, PollEvent], PollState] = {
    (PollState.IDLE, PollEvent.START): PollState.POLLING,
    (PollState.POLLING, PollEvent.FETCHED): PollState.MAPPING,
    (PollState.POLLING, PollEvent.CYCLE_COMPLETE): PollState.SLEEPING,
    (PollState.POLLING, PollEvent.QUERY_FAILED): PollState.SLEEPING,
    (PollState.POLLING, PollEvent.SESSION_EXPIRED): PollState.AUTHENTICATING,
    (PollState.MAPPING, PollEvent.MAPPED): PollState.DELIVERING,
    (PollState.DELIVERING, PollEvent.DELIVERED): PollState.POLLING,
    # a successful re-login still abandons the cycle
    (PollState.AUTHENTICATING, PollEvent.AUTHENTICATED): PollState.SLEEPING,
    (PollState.AUTHENTICATING, PollEvent.LOGIN_FAILED): PollState.SHUTTING_DOWN,
    (PollState.SLEEPING, PollEvent.WOKE): PollState.POLLING,
}


def next_state(state: PollState, event: PollEvent) -> PollState:
    """Return the state reached from ``state`` on ``event``."""

    if event is PollEvent.STOP:
        return PollState.SHUTTING_DOWN
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"No transition from {state.value} on {event.value}"
        ) from None


def remaining_sleep(interval: float, elapsed: float) -> float:
    """Seconds left in the cycle; never negative."""

    return max(0.0, interval - elapsed)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CycleResult:
    outcome: CycleOutcome = CycleOutcome.COMPLETE
    beds: int = 0
    points: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=_utcnow)


class PollScheduler:
    """Polls SleepIQ every ``interval_seconds`` and hands points to the sink.

    The session client must be logged in before :meth:`run`. A failed
    re-login after a session expiry is fatal: :meth:`run` raises
    :class:`AuthenticationError`.
    """

    def __init__(
        self,
        *,
        client: SessionClient,
        sink: MetricWriter,
        interval_seconds: float,
        stop_event: asyncio.Event,
        measurement_prefix: str = "",
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._sink = sink
        self._interval = interval_seconds
        self._stop_event = stop_event
        self._prefix = measurement_prefix
        self._clock = clock
        self._monotonic = monotonic
        self._state = PollState.IDLE
        self.cycles = 0
        self.last_cycle: Optional[CycleResult] = None

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    def health(self) -> tuple[bool, Optional[str]]:
        result = self.last_cycle
        if result is None:
            return True, "awaiting first cycle"
        if result.outcome is CycleOutcome.COMPLETE:
            return True, f"{result.points} points from {result.beds} beds"
        return False, result.error or result.outcome.value

    async def run(self) -> None:
        """Run poll cycles until the stop event is set."""

        self._transition(PollEvent.START)
        LOGGER.info("Polling SleepIQ every %.1fs", self._interval)
        try:
            while not self._stop_event.is_set():
                started = self._monotonic()
                result = await self.run_cycle()
                result.elapsed = self._monotonic() - started
                self.last_cycle = result
                self.cycles += 1
                LOGGER.debug(
                    "Poll cycle %d finished (%s): %d points from %d beds in %.2fs",
                    self.cycles,
                    result.outcome.value,
                    result.points,
                    result.beds,
                    result.elapsed,
                )

                if await self._sleep(remaining_sleep(self._interval, result.elapsed)):
                    break
                self._transition(PollEvent.WOKE)
        finally:
            self._transition(PollEvent.STOP)

    async def run_cycle(self) -> CycleResult:
        """Run one poll cycle, ending in the SLEEPING state.

        Raises :class:`AuthenticationError` when a re-login fails.
        """

        if self._state is PollState.IDLE:
            self._transition(PollEvent.START)
        elif self._state is PollState.SLEEPING:
            self._transition(PollEvent.WOKE)

        result = CycleResult()
        prefix = self._prefix
        try:
            beds = await self._client.list_beds()
            result.beds = len(beds)

            family = await self._client.family_status()
            # shared by every sleeper point of this cycle
            family_timestamp = self._clock()

            for bed in beds:
                foundation = await self._client.foundation_status(bed.bed_id)
                self._emit(
                    result,
                    lambda: map_foundation(bed, foundation, self._clock(), prefix=prefix),
                )

                foot_warmer = await self._client.foot_warmer_status(bed.bed_id)
                self._emit(
                    result,
                    lambda: map_foot_warmer(bed, foot_warmer, self._clock(), prefix=prefix),
                )

                for sleepers in match_sleepers(bed, family):
                    self._emit(
                        result,
                        lambda: map_sleepers(bed, sleepers, family_timestamp, prefix=prefix),
                    )
        except SessionExpiredError as exc:
            LOGGER.error("%s", exc)
            self._transition(PollEvent.SESSION_EXPIRED)
            await self._relogin()
            result.outcome = CycleOutcome.SESSION_RENEWED
            result.error = str(exc)
        except QueryError as exc:
            LOGGER.error("%s", exc)
            self._transition(PollEvent.QUERY_FAILED)
            result.outcome = CycleOutcome.QUERY_FAILED
            result.error = str(exc)
        else:
            self._transition(PollEvent.CYCLE_COMPLETE)

        result.finished_at = self._clock()
        return result

    def _emit(self, result: CycleResult, build: Callable[[], MetricPoint]) -> None:
        self._transition(PollEvent.FETCHED)
        point = build()
        self._transition(PollEvent.MAPPED)
        self._sink.write_point(point)
        self._transition(PollEvent.DELIVERED)
        result.points += 1

    async def _relogin(self) -> None:
        LOGGER.info("Refreshing login due to invalid session")
        try:
            await self._client.login()
        except AuthenticationError:
            self._transition(PollEvent.LOGIN_FAILED)
            raise
        self._transition(PollEvent.AUTHENTICATED)

    async def _sleep(self, delay: float) -> bool:
        """Wait out the cycle; return True when the stop event fired."""

        if self._stop_event.is_set():
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _transition(self, event: PollEvent) -> None:
        previous = self._state
        self._state = next_state(previous, event)
        if previous is not self._state:
            LOGGER.debug(
                "Poll state %s -> %s (%s)", previous.value, self._state.value, event.value
            )
