"""Core primitives for sleepnumber-stats."""

from .models import (
    Bed,
    BedFamilyStatus,
    FieldValue,
    FootWarmerState,
    FoundationState,
    MetricPoint,
    SleeperSide,
    SleepIQSession,
)
from .protocols import MetricWriter, PointWriter, SleepIQAdapter

__all__ = [
    "Bed",
    "BedFamilyStatus",
    "FieldValue",
    "FootWarmerState",
    "FoundationState",
    "MetricPoint",
    "MetricWriter",
    "PointWriter",
    "SleeperSide",
    "SleepIQAdapter",
    "SleepIQSession",
]
