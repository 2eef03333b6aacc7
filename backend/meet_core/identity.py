"""Participant identity resolution, attendance and chest numbers.

One physical person may own several participant records (one per
registration). Records that share a registration number or institutional
email are treated as the same person: attendance fans out to all of them,
while a chest number is written to the single ``clear_id`` it was assigned
to.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Set

from .catalog import EventCatalog
from .errors import (
    ConditionFailedError,
    EventNotFound,
    NotFoundError,
    ParticipantNotFound,
    StorageError,
    ValidationError,
)
from .store import DataStore, utc_now_iso


logger = logging.getLogger(__name__)

PARTICIPANTS = "participants"
REGISTRATIONS = "registrations"

CHEST_NUMBER_RE = re.compile(r"^\d{3,4}$")


def participant_view(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "clearId": row.get("clear_id"),
        "fullName": row.get("full_name"),
        "registrationNumber": row.get("registration_number"),
        "institutionalEmail": row.get("institutional_email"),
        "schoolShort": row.get("school_short"),
        "classSection": row.get("class_section"),
        "departmentShort": row.get("department_short"),
        "gender": row.get("gender"),
        "chestNumber": row.get("chest_number"),
        "createdAt": row.get("created_at"),
    }


def _email(row: Dict[str, Any]) -> str:
    return str(row.get("institutional_email") or "").strip().lower()


def _registration_number(row: Dict[str, Any]) -> str:
    return str(row.get("registration_number") or "").strip()


def _same_person(row: Dict[str, Any], reg_no: str, email: str) -> bool:
    return bool(reg_no and _registration_number(row) == reg_no) or bool(email and _email(row) == email)


class IdentityService:
    def __init__(self, store: DataStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Resolution

    def resolve(self, identifier: str) -> List[Dict[str, Any]]:
        """Return every participant record belonging to the person behind ``identifier``.

        An identifier containing ``@`` is matched against the institutional
        email (case-insensitive). Anything else is tried as a registration
        number first and then as a clear id, which is widened to every record
        sharing its registration number or email. The earliest-created record
        comes first.
        """

        value = (identifier or "").strip()
        if not value:
            raise ValidationError("Identifier is required")

        if "@" in value:
            email = value.lower()
            rows = self.store.scan(PARTICIPANTS, predicate=lambda row: _email(row) == email)
        else:
            rows = self.store.scan(PARTICIPANTS, predicate=lambda row: _registration_number(row) == value)
            if not rows:
                record = self.store.get(PARTICIPANTS, {"clear_id": value})
                if record is None:
                    return []
                reg_no, email = _registration_number(record), _email(record)
                if reg_no or email:
                    rows = self.store.scan(PARTICIPANTS, predicate=lambda row: _same_person(row, reg_no, email))
                if not any(row.get("clear_id") == value for row in rows):
                    rows.append(record)

        rows.sort(key=lambda row: (str(row.get("created_at") or ""), str(row.get("clear_id") or "")))
        return rows

    def lookup(self, identifier: str) -> Dict[str, Any]:
        records = self.resolve(identifier)
        if not records:
            raise ParticipantNotFound("User not found")

        value = identifier.strip()
        canonical = next((row for row in records if row.get("clear_id") == value), records[0])
        clear_ids = [row.get("clear_id") for row in records]
        wanted = set(clear_ids)

        registrations = self.store.scan(REGISTRATIONS, predicate=lambda row: row.get("player_clear_id") in wanted)
        catalog = EventCatalog()
        catalog.add_from_registrations(registrations)

        events: Dict[str, Dict[str, Any]] = {}
        for reg in registrations:
            event_id = str(reg.get("event_id") or "")
            described = catalog.describe(event_id).as_dict()
            current = events.setdefault(event_id, {**described, "attendance": False})
            current["attendance"] = current["attendance"] or bool(reg.get("attendance"))

        return {
            "participant": participant_view(canonical),
            "duplicates": [clear_id for clear_id in clear_ids if clear_id != canonical.get("clear_id")],
            "registeredEvents": list(events.values()),
        }

    # ------------------------------------------------------------------
    # Attendance

    def mark_attendance(self, identifier: str, event_id: str) -> Dict[str, Any]:
        return self._set_attendance(identifier, event_id, True)

    def unmark_attendance(self, identifier: str, event_id: str) -> Dict[str, Any]:
        return self._set_attendance(identifier, event_id, False)

    def _set_attendance(self, identifier: str, event_id: str, present: bool) -> Dict[str, Any]:
        event_value = (event_id or "").strip()
        if not (identifier or "").strip() or not event_value:
            raise ValidationError("Identifier and event ID are required")

        records = self.resolve(identifier)
        if not records:
            raise ParticipantNotFound("User not found")
        clear_ids: Set[str] = {str(row.get("clear_id")) for row in records}

        registrations = [
            row for row in self.store.query(REGISTRATIONS, event_value) if row.get("player_clear_id") in clear_ids
        ]
        if not registrations:
            raise NotFoundError("No registration found for this event")

        updated = failed = 0
        timestamp = utc_now_iso()
        for reg in registrations:
            key = {"event_id": event_value, "player_clear_id": reg.get("player_clear_id")}
            try:
                self.store.update(REGISTRATIONS, key, {"attendance": present, "updated_at": timestamp})
            except (ConditionFailedError, StorageError) as exc:
                failed += 1
                logger.warning("Attendance update failed for %s/%s: %s", event_value, key["player_clear_id"], exc)
            else:
                updated += 1

        if updated == 0:
            raise StorageError(f"Failed to update attendance for {failed} registration(s)")

        action = "marked" if present else "unmarked"
        logger.info("Attendance %s for %d registration(s) in %s", action, updated, event_value)
        return {
            "success": True,
            "message": f"Attendance {action} successfully",
            "updatedCount": updated,
            "failedCount": failed,
            "clearIds": sorted(str(reg.get("player_clear_id")) for reg in registrations),
        }

    # ------------------------------------------------------------------
    # Chest numbers

    def assign_chest_number(self, clear_id: str, chest_number: str) -> Dict[str, Any]:
        """Write ``chest_number`` to exactly one participant record."""

        clear_value = (clear_id or "").strip()
        chest_value = str(chest_number or "").strip()
        if not clear_value or not chest_value:
            raise ValidationError("Missing Clear ID or chest number")
        if not CHEST_NUMBER_RE.match(chest_value):
            raise ValidationError("Chest number must be 3-4 digits only")

        try:
            row = self.store.update(
                PARTICIPANTS,
                {"clear_id": clear_value},
                {"chest_number": chest_value, "updated_at": utc_now_iso()},
            )
        except ConditionFailedError as exc:
            raise ParticipantNotFound("Clear ID not found") from exc

        logger.info("Assigned chest number %s to %s", chest_value, clear_value)
        return {
            "success": True,
            "message": "Chest number updated successfully",
            "participant": participant_view(row),
        }

    # ------------------------------------------------------------------
    # Events

    def catalog(self) -> EventCatalog:
        catalog = EventCatalog()
        catalog.add_from_registrations(self.store.scan(REGISTRATIONS))
        return catalog

    def event_roster(self, event_id: str) -> List[Dict[str, Any]]:
        """Participants registered for ``event_id``, one entry per clear id."""

        event_value = (event_id or "").strip()
        registrations = self.store.query(REGISTRATIONS, event_value)
        if not registrations and EventCatalog().get(event_value) is None:
            raise EventNotFound(f"Event '{event_value}' not found")

        participants = {str(row.get("clear_id")): row for row in self.store.scan(PARTICIPANTS)}
        roster: List[Dict[str, Any]] = []
        seen: Set[str] = set()
        for reg in registrations:
            clear_id = str(reg.get("player_clear_id") or "")
            if not clear_id or clear_id in seen:
                continue
            seen.add(clear_id)
            record = participants.get(clear_id, {})
            roster.append(
                {
                    "clearId": clear_id,
                    "fullName": record.get("full_name"),
                    "registrationNumber": record.get("registration_number"),
                    "schoolShort": record.get("school_short"),
                    "chestNumber": record.get("chest_number") or reg.get("chest_number"),
                    "attendance": bool(reg.get("attendance")),
                    "duplicateCount": _duplicate_count(record, participants.values()),
                }
            )
        roster.sort(key=lambda item: (str(item["fullName"] or "").lower(), item["clearId"]))
        return roster


def _duplicate_count(record: Dict[str, Any], everyone: Iterable[Dict[str, Any]]) -> int:
    """Number of other records that belong to the same person as ``record``."""

    if not record:
        return 0
    reg_no, email = _registration_number(record), _email(record)
    return sum(
        1
        for row in everyone
        if row.get("clear_id") != record.get("clear_id") and _same_person(row, reg_no, email)
    )
