from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import ValidationError

Number = Union[int, float]

INDIVIDUAL = "individual"
TEAM = "team"
EVENT_TYPES = (INDIVIDUAL, TEAM)

POSITION_POINTS = {1: 5, 2: 3, 3: 1}


def default_points(position: Any) -> int:
    """Position-based points: 1st -> 5, 2nd -> 3, 3rd -> 1, anything else -> 0."""

    try:
        return POSITION_POINTS.get(int(position), 0)
    except (TypeError, ValueError):
        return 0


def resolve_points(row: Dict[str, Any]) -> Number:
    """Points a stored score row contributes to its school.

    Rows written before event types existed count as individual results.
    """

    event_type = row.get("event_type") or INDIVIDUAL
    points = row.get("points")
    if event_type == TEAM:
        return points or 0
    if points is not None:
        return points
    return default_points(row.get("position"))


def _required_text(payload: Dict[str, Any], field: str, label: str) -> str:
    value = payload.get(field)
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def coerce_position(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Position must be a positive whole number")
    try:
        position = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Position must be a positive whole number") from None
    if position < 1 or position > 99:
        raise ValidationError("Position must be between 1 and 99")
    return position


def coerce_points(value: Any) -> Optional[Number]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("Points must be a number")
    if isinstance(value, (int, float)):
        points = value
    else:
        try:
            points = float(str(value).strip())
        except ValueError:
            raise ValidationError("Points must be a number") from None
        if points.is_integer():
            points = int(points)
    if points < 0:
        raise ValidationError("Points cannot be negative")
    return points


@dataclass
class WinnerEntry:
    """One individual placing submitted for an event."""

    position: int
    chest_no: str
    name: str
    school: str
    points: Optional[Number] = None  # None means position-based

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WinnerEntry":
        if not isinstance(payload, dict):
            raise ValidationError("Each winner must be an object")
        return cls(
            position=coerce_position(payload.get("position")),
            chest_no=_required_text(payload, "chestNo", "Chest number"),
            name=_required_text(payload, "name", "Student name"),
            school=_required_text(payload, "school", "School"),
            points=coerce_points(payload.get("points")),
        )

    @property
    def resolved_points(self) -> Number:
        if self.points is not None:
            return self.points
        return default_points(self.position)


@dataclass
class TeamEntry:
    """A team result; points are always explicit and positive."""

    team_name: str
    school: str
    points: Number

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TeamEntry":
        if not isinstance(payload, dict):
            raise ValidationError("Team entry is required for team events")
        points = coerce_points(payload.get("points"))
        if points is None or points <= 0:
            raise ValidationError("Team points must be greater than zero")
        return cls(
            team_name=_required_text(payload, "teamName", "Team name"),
            school=_required_text(payload, "school", "School"),
            points=points,
        )
