"""Map SleepIQ query results onto InfluxDB metric points.

Every function here is pure: the caller supplies the timestamp, and the
returned points are not retained. Booleans are written as 0/1 integers so
the fields stay numeric in the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Iterator

from .. import constants
from ..core import Bed, BedFamilyStatus, FootWarmerState, FoundationState, MetricPoint


def bool_to_int(value: bool) -> int:
    return 1 if value else 0


def bed_tags(bed: Bed) -> Dict[str, str]:
    return {
        "size": bed.size,
        "name": bed.name,
        "generation": bed.generation,
        "model": bed.model,
    }


def map_foundation(
    bed: Bed,
    foundation: FoundationState,
    timestamp: datetime,
    *,
    prefix: str = "",
) -> MetricPoint:
    tags = bed_tags(bed)
    tags["type"] = foundation.type
    return MetricPoint(
        measurement=f"{prefix}{constants.MEASUREMENT_FOUNDATION}",
        tags=tags,
        fields={
            "is_moving": bool_to_int(foundation.is_moving),
            "current_position_preset_right": foundation.current_position_preset_right,
            "current_position_preset_left": foundation.current_position_preset_left,
            "right_head_position": foundation.right_head_position,
            "left_head_position": foundation.left_head_position,
            "right_foot_position": foundation.right_foot_position,
            "left_foot_position": foundation.left_foot_position,
        },
        timestamp=timestamp,
    )


def map_foot_warmer(
    bed: Bed,
    foot_warmer: FootWarmerState,
    timestamp: datetime,
    *,
    prefix: str = "",
) -> MetricPoint:
    return MetricPoint(
        measurement=f"{prefix}{constants.MEASUREMENT_FOOTWARMERS}",
        tags=bed_tags(bed),
        fields={
            "foot_warming_status_left": foot_warmer.status_left,
            "foot_warming_status_right": foot_warmer.status_right,
        },
        timestamp=timestamp,
    )


def map_sleepers(
    bed: Bed,
    sleepers: BedFamilyStatus,
    timestamp: datetime,
    *,
    prefix: str = "",
) -> MetricPoint:
    return MetricPoint(
        measurement=f"{prefix}{constants.MEASUREMENT_SLEEPERS}",
        tags=bed_tags(bed),
        fields={
            "left_sleeper_is_in_bed": bool_to_int(sleepers.left.is_in_bed),
            "right_sleeper_is_in_bed": bool_to_int(sleepers.right.is_in_bed),
            "left_sleep_number": sleepers.left.sleep_number,
            "right_sleep_number": sleepers.right.sleep_number,
            "left_pressure": sleepers.left.pressure,
            "right_pressure": sleepers.right.pressure,
        },
        timestamp=timestamp,
    )


def match_sleepers(
    bed: Bed, family: Iterable[BedFamilyStatus]
) -> Iterator[BedFamilyStatus]:
    """Yield the family status entries recorded for ``bed``."""

    for entry in family:
        if entry.bed_id == bed.bed_id:
            yield entry
