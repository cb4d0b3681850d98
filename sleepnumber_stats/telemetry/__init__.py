"""Poll loop and metric mapping for SleepIQ telemetry."""

from .mapper import (
    bed_tags,
    bool_to_int,
    map_foot_warmer,
    map_foundation,
    map_sleepers,
    match_sleepers,
)
from .polling import (
    CycleOutcome,
    CycleResult,
    InvalidTransitionError,
    PollEvent,
    PollScheduler,
    PollState,
    next_state,
    remaining_sleep,
)

__all__ = [
    "CycleOutcome",
    "CycleResult",
    "InvalidTransitionError",
    "PollEvent",
    "PollScheduler",
    "PollState",
    "bed_tags",
    "bool_to_int",
    "map_foot_warmer",
    "map_foundation",
    "map_sleepers",
    "match_sleepers",
    "next_state",
    "remaining_sleep",
]
