"""Composite key derivation for score, school and team slots.

All helpers are pure string transforms. Names that differ only in stripped
punctuation map to the same id (``"100m Sprint!"`` and ``"100m Sprint"``);
that collision is accepted rather than disambiguated.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Tuple

METADATA_SLOT = "METADATA"
POSITION_PREFIX = "POS#"
TEAM_PREFIX = "TEAM#"
EVENT_PREFIX = "EVENT#"
SCHOOL_PREFIX = "SCHOOL#"

_STRIP_RE = re.compile(r"[^A-Z0-9\s]")
_SPACE_RE = re.compile(r"\s+")
_POSITION_SLOT_RE = re.compile(r"^POS#(\d+)(?:_(\d+))?$")
_TEAM_SLOT_RE = re.compile(r"^TEAM#(\d+)$")


def _normalise_name(name: str) -> str:
    cleaned = _STRIP_RE.sub("", (name or "").strip().upper())
    return _SPACE_RE.sub("_", cleaned)


def event_id(event_name: str) -> str:
    """``"100m Sprint (Boys)"`` -> ``"EVENT#100M_SPRINT_BOYS"``."""

    return EVENT_PREFIX + _normalise_name(event_name)


def school_id(school_name: str) -> str:
    return SCHOOL_PREFIX + _normalise_name(school_name)


def position_slot(position: int, suffix: int = 0) -> str:
    base = f"{POSITION_PREFIX}{int(position):02d}"
    if suffix:
        return f"{base}_{suffix}"
    return base


def team_slot(number: int) -> str:
    return f"{TEAM_PREFIX}{int(number):02d}"


def parse_position_slot(slot_id: str) -> Optional[Tuple[int, int]]:
    """Return ``(position, suffix)`` for a ``POS#`` slot, ``None`` otherwise.

    The bare ``POS#nn`` slot has suffix 0.
    """

    match = _POSITION_SLOT_RE.match(slot_id or "")
    if not match:
        return None
    position = int(match.group(1))
    suffix = int(match.group(2)) if match.group(2) else 0
    return position, suffix


def parse_team_slot(slot_id: str) -> Optional[int]:
    match = _TEAM_SLOT_RE.match(slot_id or "")
    if not match:
        return None
    return int(match.group(1))


def is_result_slot(slot_id: str) -> bool:
    return parse_position_slot(slot_id) is not None or parse_team_slot(slot_id) is not None


def next_free_slot(existing: Iterable[int], start: int = 0) -> int:
    """Return the lowest integer >= ``start`` that is not in ``existing``."""

    taken = set(existing)
    candidate = start
    while candidate in taken:
        candidate += 1
    return candidate
