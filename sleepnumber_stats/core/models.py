"""Domain models for SleepIQ state and metric points."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

FieldValue = Union[int, float, str]


@dataclass(slots=True)
class SleepIQSession:
    """Credential state for one SleepIQ login.

    The vendor API keys every request on the login ``key`` query parameter
    plus the cookies returned by the login call. ``valid`` flips to False as
    soon as any request reports the session as expired.
    """

    key: str
    user_id: Optional[str] = None
    cookies: Dict[str, str] = field(default_factory=dict)
    logged_in_at: Optional[datetime] = None
    valid: bool = True

    def is_valid(self) -> bool:
        return self.valid and bool(self.key)

    def invalidate(self) -> None:
        self.valid = False


@dataclass(frozen=True, slots=True)
class Bed:
    bed_id: str
    size: str
    name: str
    generation: str
    model: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Bed":
        return cls(
            bed_id=str(payload["bedId"]),
            size=str(payload.get("size", "")),
            name=str(payload.get("name", "")),
            generation=str(payload.get("generation", "")),
            model=str(payload.get("model", "")),
        )


def _parse_position(value: Any) -> int:
    # actuator positions are reported as hex strings ("00".."64")
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return int(str(value), 16)


@dataclass(frozen=True, slots=True)
class FoundationState:
    type: str
    is_moving: bool
    current_position_preset_right: str
    current_position_preset_left: str
    right_head_position: int
    left_head_position: int
    right_foot_position: int
    left_foot_position: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FoundationState":
        return cls(
            type=str(payload.get("fsType", "")),
            is_moving=bool(payload.get("fsIsMoving", False)),
            current_position_preset_right=str(
                payload.get("fsCurrentPositionPresetRight", "")
            ),
            current_position_preset_left=str(
                payload.get("fsCurrentPositionPresetLeft", "")
            ),
            right_head_position=_parse_position(payload["fsRightHeadPosition"]),
            left_head_position=_parse_position(payload["fsLeftHeadPosition"]),
            right_foot_position=_parse_position(payload["fsRightFootPosition"]),
            left_foot_position=_parse_position(payload["fsLeftFootPosition"]),
        )


@dataclass(frozen=True, slots=True)
class FootWarmerState:
    status_left: int
    status_right: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FootWarmerState":
        return cls(
            status_left=int(payload["footWarmingStatusLeft"]),
            status_right=int(payload["footWarmingStatusRight"]),
        )


@dataclass(frozen=True, slots=True)
class SleeperSide:
    is_in_bed: bool
    sleep_number: int
    pressure: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SleeperSide":
        return cls(
            is_in_bed=bool(payload.get("isInBed", False)),
            sleep_number=int(payload.get("sleepNumber") or 0),
            pressure=int(payload.get("pressure") or 0),
        )


@dataclass(frozen=True, slots=True)
class BedFamilyStatus:
    """Occupancy snapshot for one bed, taken from the family status call."""

    bed_id: str
    left: SleeperSide
    right: SleeperSide

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BedFamilyStatus":
        return cls(
            bed_id=str(payload["bedId"]),
            left=SleeperSide.from_payload(payload.get("leftSide") or {}),
            right=SleeperSide.from_payload(payload.get("rightSide") or {}),
        )


@dataclass(slots=True)
class MetricPoint:
    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, FieldValue]
    timestamp: datetime
    precision: str = "ns"
