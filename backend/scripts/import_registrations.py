"""Load participant and event-registration rows from a registration CSV export.

Each CSV row describes one registration: the participant columns go to the
``participants`` table (keyed by clear id) and the event columns go to the
``registrations`` table. The same person may appear under several clear ids;
those rows are kept as separate participant records. Rows whose keys already
exist in the store are left untouched, so the import can be re-run.

Usage::

    python -m scripts.import_registrations registrations.csv
"""

from __future__ import annotations

import csv
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from meet_core.errors import ConditionFailedError, MeetError
from meet_core.store import DataStore, utc_now_iso

# canonical column -> accepted header spellings (compared lower-cased)
COLUMN_ALIASES: Dict[str, tuple[str, ...]] = {
    "clear_id": ("clear_id", "clearid", "clear id", "playerclearid"),
    "full_name": ("full_name", "fullname", "name", "full name"),
    "registration_number": ("registration_number", "registrationnumber", "regnumber", "reg no", "reg_number"),
    "institutional_email": ("institutional_email", "institutionalemail", "email", "christgmail"),
    "school_short": ("school_short", "schoolshort", "school"),
    "class_section": ("class_section", "classsection", "class"),
    "department_short": ("department_short", "departmentshort", "department"),
    "gender": ("gender",),
    "event_id": ("event_id", "eventid"),
    "event_name": ("event_name", "eventname", "event"),
    "category": ("category",),
}


@dataclass
class RegistrationRow:
    clear_id: str
    full_name: str
    registration_number: Optional[str]
    institutional_email: Optional[str]
    school_short: Optional[str]
    class_section: Optional[str]
    department_short: Optional[str]
    gender: Optional[str]
    event_id: Optional[str]
    event_name: Optional[str]
    category: Optional[str]

    def participant(self, timestamp: str) -> Dict[str, object]:
        return {
            "clear_id": self.clear_id,
            "full_name": self.full_name,
            "registration_number": self.registration_number,
            "institutional_email": self.institutional_email,
            "school_short": self.school_short,
            "class_section": self.class_section,
            "department_short": self.department_short,
            "gender": self.gender,
            "created_at": timestamp,
        }

    def registration(self, timestamp: str) -> Optional[Dict[str, object]]:
        if not self.event_id:
            return None
        return {
            "event_id": self.event_id,
            "player_clear_id": self.clear_id,
            "event_name": self.event_name,
            "category": self.category,
            "attendance": False,
            "created_at": timestamp,
            "updated_at": timestamp,
        }


def _clean(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip().strip("\ufeff")


def _iter_dict_rows(path: Path) -> Iterator[Dict[str, str]]:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            with path.open(newline="", encoding=encoding) as handle:
                rows = list(csv.DictReader(handle))
        except UnicodeDecodeError:
            continue
        yield from rows
        return
    raise UnicodeDecodeError("", b"", 0, 0, f"Unable to decode {path}")


def _normalise_headers(row: Dict[str, str]) -> Dict[str, str]:
    lowered = {_clean(key).lower(): _clean(value) for key, value in row.items() if key is not None}
    normalised: Dict[str, str] = {}
    for column, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if lowered.get(alias):
                normalised[column] = lowered[alias]
                break
    return normalised


def parse_registrations(path: Path) -> Iterator[RegistrationRow]:
    for raw in _iter_dict_rows(path):
        row = _normalise_headers(raw)
        clear_id = row.get("clear_id", "")
        full_name = row.get("full_name", "")
        if not clear_id or not full_name:
            continue
        email = row.get("institutional_email")
        yield RegistrationRow(
            clear_id=clear_id,
            full_name=full_name,
            registration_number=row.get("registration_number") or None,
            institutional_email=email.lower() if email else None,
            school_short=row.get("school_short") or None,
            class_section=row.get("class_section") or None,
            department_short=row.get("department_short") or None,
            gender=row.get("gender") or None,
            event_id=row.get("event_id") or None,
            event_name=row.get("event_name") or None,
            category=row.get("category") or None,
        )


def import_registrations(store: DataStore, path: Path) -> Dict[str, int]:
    """Insert new participants and registrations; returns per-table counters."""

    stats = {"participants": 0, "registrations": 0, "skipped": 0}
    timestamp = utc_now_iso()
    for record in parse_registrations(path):
        try:
            store.put("participants", record.participant(timestamp), condition="not_exists")
            stats["participants"] += 1
        except ConditionFailedError:
            stats["skipped"] += 1

        registration = record.registration(timestamp)
        if registration is None:
            continue
        try:
            store.put("registrations", registration, condition="not_exists")
            stats["registrations"] += 1
        except ConditionFailedError:
            stats["skipped"] += 1
    return stats


def main(argv: List[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: import_registrations.py <registrations.csv>", file=sys.stderr)
        return 2

    path = Path(args[0])
    if not path.exists():
        print(f"ERROR: {path} does not exist", file=sys.stderr)
        return 1

    try:
        stats = import_registrations(DataStore(), path)
    except MeetError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(
        f"Imported {stats['participants']} participants and {stats['registrations']} registrations "
        f"({stats['skipped']} existing rows skipped)"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
