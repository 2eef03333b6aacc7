from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from . import keys
from .entries import INDIVIDUAL, TEAM, resolve_points

logger = logging.getLogger(__name__)

TIE_BREAKS = ("alphabetical", "insertion")
UNKNOWN_SCHOOL = "Unknown"

_MEDALS = {1: "🥇 1st Place", 2: "🥈 2nd Place", 3: "🥉 3rd Place"}


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def prize_label(row: Dict[str, Any]) -> str:
    """Display label for a recent winner: a medal for podium places, a trophy for teams."""

    if (row.get("event_type") or INDIVIDUAL) == TEAM:
        return f"🏆 Team ({_format_points(resolve_points(row))} pts)"
    try:
        position = int(row.get("position"))
    except (TypeError, ValueError):
        return "Participant"
    return _MEDALS.get(position, f"{_ordinal(position)} Place")


def _format_points(points: Any) -> Any:
    if isinstance(points, float) and points.is_integer():
        return int(points)
    return points


@dataclass
class SchoolTotals:
    total_points: float = 0
    wins: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"totalPoints": _format_points(self.total_points), "wins": dict(self.wins)}


@dataclass
class RecentWinner:
    event_id: str
    position_id: str
    event_name: str
    event_type: str
    name: str
    chest_no: str | None
    school_name: str
    points: Any
    prize: str
    position: int | None
    recorded_at: str | None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "positionId": self.position_id,
            "eventName": self.event_name,
            "chestNo": self.chest_no,
            "eventType": self.event_type,
            "name": self.name,
            "schoolName": self.school_name,
            "points": self.points,
            "prize": self.prize,
            "position": self.position,
            "recordedAt": self.recorded_at,
        }


@dataclass
class Scoreboard:
    totals_per_school: Dict[str, SchoolTotals] = field(default_factory=dict)
    top_schools: List[Dict[str, Any]] = field(default_factory=list)
    recent_winners: List[RecentWinner] = field(default_factory=list)
    wins_by_event_by_school: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalsPerSchool": {school: totals.as_dict() for school, totals in self.totals_per_school.items()},
            "topSchools": list(self.top_schools),
            "recentWinners": [winner.as_dict() for winner in self.recent_winners],
            "winsByEventBySchool": {event: dict(counts) for event, counts in self.wins_by_event_by_school.items()},
        }


def compute_scoreboard(
    records: Iterable[Dict[str, Any]],
    tie_break: str = "alphabetical",
    top_n: int = 5,
    recent_limit: int = 10,
) -> Scoreboard:
    """Fold raw score rows into the scoreboard read-model.

    ``tie_break`` orders schools with equal points: ``alphabetical`` by school
    name, or ``insertion`` in the order schools first appear in ``records``.
    """

    if tie_break not in TIE_BREAKS:
        raise ValueError(f"Unknown tie-break policy '{tie_break}'")

    board = Scoreboard()
    results: List[Dict[str, Any]] = []
    # event id -> display name; the first name seen for an id is used everywhere
    event_names: Dict[str, str] = {}
    for row in records:
        if not keys.is_result_slot(str(row.get("slot_id") or "")):
            continue
        results.append(row)

        school = str(row.get("school_name") or "").strip() or UNKNOWN_SCHOOL
        raw_name = str(row.get("event_name") or "").strip()
        event_id = str(row.get("event_id") or "") or keys.event_id(raw_name)
        event = event_names.setdefault(event_id, raw_name or event_id)
        totals = board.totals_per_school.setdefault(school, SchoolTotals())
        totals.total_points += resolve_points(row)
        totals.wins[event] = totals.wins.get(event, 0) + 1

        per_event = board.wins_by_event_by_school.setdefault(event, {})
        per_event[school] = per_event.get(school, 0) + 1

    ranked = list(board.totals_per_school.items())
    if tie_break == "alphabetical":
        ranked.sort(key=lambda item: item[0].lower())
    ranked.sort(key=lambda item: item[1].total_points, reverse=True)
    board.top_schools = [
        {"schoolName": school, "totalPoints": _format_points(totals.total_points)}
        for school, totals in ranked[:top_n]
    ]

    results.sort(key=lambda row: str(row.get("recorded_at") or ""), reverse=True)
    for row in results[:recent_limit]:
        is_team = (row.get("event_type") or INDIVIDUAL) == TEAM
        board.recent_winners.append(
            RecentWinner(
                event_id=str(row.get("event_id") or ""),
                position_id=str(row.get("slot_id") or ""),
                event_name=str(row.get("event_name") or ""),
                event_type=TEAM if is_team else INDIVIDUAL,
                name=str((row.get("team_name") if is_team else row.get("student_name")) or ""),
                chest_no=None if is_team else row.get("chest_no"),
                school_name=str(row.get("school_name") or "").strip() or UNKNOWN_SCHOOL,
                points=_format_points(resolve_points(row)),
                prize=prize_label(row),
                position=None if is_team else row.get("position"),
                recorded_at=row.get("recorded_at"),
            )
        )

    logger.debug("Scoreboard computed from %d result rows", len(results))
    return board
