"""Recording, amending and removing event results.

Results for one event live in the ``scores`` table under a single partition
(``event_id``). Each event carries one ``METADATA`` slot next to its winner
(``POS#nn`` / ``POS#nn_k``) and team (``TEAM#nn``) slots. Re-submitting
results never overwrites an existing slot: new winners at an occupied
position get the next free suffix.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set

from . import keys
from .entries import (
    EVENT_TYPES,
    INDIVIDUAL,
    TEAM,
    TeamEntry,
    WinnerEntry,
    coerce_points,
    coerce_position,
    default_points,
)
from .errors import (
    ConditionFailedError,
    EventNotFound,
    PositionTaken,
    PreconditionFailedError,
    RecordNotFound,
    StorageError,
    ValidationError,
)
from .store import BATCH_LIMIT, DataStore, utc_now_iso


logger = logging.getLogger(__name__)

SCORES = "scores"


class ScoreRecorder:
    def __init__(self, store: DataStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Submission

    def record_results(
        self,
        event_type: str,
        event_name: str,
        winners: Optional[List[Dict[str, Any]]] = None,
        team_entry: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Persist one submission of results for an event.

        Returns ``{"success", "eventId", "itemsSaved", "slots"}``. The metadata
        slot is only written when the event has no slots yet.
        """

        kind = (event_type or "").strip().lower()
        name = (event_name or "").strip()
        if not kind or not name:
            raise ValidationError("Event type and event name are required")
        if kind not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type '{event_type}'")

        event_id = keys.event_id(name)
        if event_id == keys.EVENT_PREFIX:
            raise ValidationError("Event name must contain letters or digits")

        if kind == INDIVIDUAL:
            if not winners:
                raise ValidationError("At least one winner is required for individual events")
            if len(winners) > BATCH_LIMIT:
                raise PreconditionFailedError("Cannot save: too many entries at once")
            parsed_winners = [WinnerEntry.from_payload(item) for item in winners]
            parsed_team = None
        else:
            if team_entry is None:
                raise ValidationError("Team entry is required for team events")
            parsed_team = TeamEntry.from_payload(team_entry)
            parsed_winners = []

        existing = self.store.query(SCORES, event_id)
        timestamp = utc_now_iso()

        if parsed_team is not None:
            items = [self._team_item(event_id, name, parsed_team, existing, timestamp)]
        else:
            items = self._winner_items(event_id, name, parsed_winners, existing, timestamp)

        if not existing:
            items.insert(0, self._metadata_item(event_id, name, kind, len(items), timestamp))

        if len(items) > BATCH_LIMIT:
            raise PreconditionFailedError("Cannot save: too many entries at once")

        unprocessed = self.store.batch_write(SCORES, items)
        if unprocessed:
            saved = len(items) - len(unprocessed)
            logger.warning(
                "Partial write for %s: %d of %d items unprocessed", event_id, len(unprocessed), len(items)
            )
            raise StorageError(
                f"Partial failure: {saved} of {len(items)} items were saved. Please try again."
            )

        logger.info("Recorded %d score items for %s", len(items), event_id)
        return {
            "success": True,
            "eventId": event_id,
            "itemsSaved": len(items),
            "slots": [item["slot_id"] for item in items],
        }

    def _winner_items(
        self,
        event_id: str,
        event_name: str,
        winners: List[WinnerEntry],
        existing: Iterable[Dict[str, Any]],
        timestamp: str,
    ) -> List[Dict[str, Any]]:
        used: Dict[int, Set[int]] = defaultdict(set)
        for row in existing:
            parsed = keys.parse_position_slot(row.get("slot_id", ""))
            if parsed:
                used[parsed[0]].add(parsed[1])

        items = []
        for winner in winners:
            suffix = keys.next_free_slot(used[winner.position])
            used[winner.position].add(suffix)
            items.append(
                {
                    "event_id": event_id,
                    "slot_id": keys.position_slot(winner.position, suffix),
                    "event_name": event_name,
                    "event_type": INDIVIDUAL,
                    "position": winner.position,
                    "chest_no": winner.chest_no,
                    "student_name": winner.name,
                    "school_name": winner.school,
                    "points": winner.resolved_points,
                    "points_source": "explicit" if winner.points is not None else "position",
                    "recorded_at": timestamp,
                }
            )
        return items

    def _team_item(
        self,
        event_id: str,
        event_name: str,
        team: TeamEntry,
        existing: Iterable[Dict[str, Any]],
        timestamp: str,
    ) -> Dict[str, Any]:
        used = {
            number
            for number in (keys.parse_team_slot(row.get("slot_id", "")) for row in existing)
            if number is not None
        }
        number = keys.next_free_slot(used, start=1)
        return {
            "event_id": event_id,
            "slot_id": keys.team_slot(number),
            "event_name": event_name,
            "event_type": TEAM,
            "team_name": team.team_name,
            "school_name": team.school,
            "points": team.points,
            "points_source": "explicit",
            "recorded_at": timestamp,
        }

    @staticmethod
    def _metadata_item(
        event_id: str, event_name: str, event_type: str, count: int, timestamp: str
    ) -> Dict[str, Any]:
        return {
            "event_id": event_id,
            "slot_id": keys.METADATA_SLOT,
            "event_name": event_name,
            "event_type": event_type,
            "total_winners_recorded": count,
            "recorded_at": timestamp,
        }

    # ------------------------------------------------------------------
    # Amendments

    def edit_winner(
        self,
        event_id: str,
        position_id: str,
        new_chest_no: str,
        new_student_name: str,
        new_school_name: str,
        new_event_name: str,
        new_position: Any,
        new_points: Any = None,
    ) -> Dict[str, Any]:
        """Overwrite a winner slot, moving it when the event or position changes.

        A move is a delete of the old key followed by a put of the new one. The
        destination must be free or already hold the same chest number.
        """

        if not (event_id or "").strip() or not (position_id or "").strip():
            raise ValidationError("Event ID and Position ID are required")
        fields = [new_chest_no, new_student_name, new_school_name, new_event_name]
        if any(not str(value or "").strip() for value in fields) or new_position in (None, ""):
            raise ValidationError("All fields are required")

        position = coerce_position(new_position)
        points = coerce_points(new_points)
        chest_no = str(new_chest_no).strip()
        event_name = str(new_event_name).strip()

        old_key = {"event_id": event_id.strip(), "slot_id": position_id.strip()}
        current = self.store.get(SCORES, old_key)
        if current is None or keys.parse_position_slot(old_key["slot_id"]) is None:
            raise EventNotFound("Winner record not found")

        target_event_id = keys.event_id(event_name)
        if target_event_id == keys.EVENT_PREFIX:
            raise ValidationError("Event name must contain letters or digits")
        if target_event_id == old_key["event_id"] and position == current.get("position"):
            target_slot = old_key["slot_id"]
        else:
            target_slot = keys.position_slot(position)
        new_key = {"event_id": target_event_id, "slot_id": target_slot}
        moving = new_key != old_key

        if moving:
            occupant = self.store.get(SCORES, new_key)
            if occupant is not None and occupant.get("chest_no") != chest_no:
                raise PositionTaken(
                    f"Position {position} in {event_name} is already taken by chest number "
                    f"{occupant.get('chest_no')}"
                )

        if points is not None:
            resolved, source = points, "explicit"
        elif current.get("points_source") == "explicit":
            resolved, source = current.get("points"), "explicit"
        else:
            resolved, source = default_points(position), "position"

        updated = {
            **current,
            **new_key,
            "event_name": event_name,
            "event_type": current.get("event_type") or INDIVIDUAL,
            "position": position,
            "chest_no": chest_no,
            "student_name": str(new_student_name).strip(),
            "school_name": str(new_school_name).strip(),
            "points": resolved,
            "points_source": source,
            "recorded_at": utc_now_iso(),
        }

        try:
            if moving:
                self.store.delete(SCORES, old_key, expected={"chest_no": current.get("chest_no")})
            else:
                self.store.put(SCORES, updated, condition="exists")
        except ConditionFailedError as exc:
            raise EventNotFound("Winner record not found") from exc

        if moving:
            self.store.put(SCORES, updated)
            if target_event_id != old_key["event_id"]:
                self._ensure_metadata(target_event_id, event_name, updated["event_type"], updated["recorded_at"])
                self._drop_empty_metadata(old_key["event_id"])

        logger.info(
            "Updated winner %s/%s -> %s/%s", old_key["event_id"], old_key["slot_id"], target_event_id, target_slot
        )
        return {
            "success": True,
            "message": "Winner updated successfully",
            "updatedItem": normalise_score_row(updated),
        }

    def delete_winner(
        self,
        event_name: str,
        position: Any,
        chest_no: str,
        student_name: str,
        school_name: str,
        position_id: str | None = None,
    ) -> Dict[str, Any]:
        """Delete a winner only when every descriptive field matches the stored slot."""

        values = [event_name, chest_no, student_name, school_name]
        if any(not str(value or "").strip() for value in values) or position in (None, ""):
            raise ValidationError(
                "All fields are required: eventName, position, chestNo, studentName, schoolName"
            )
        position_value = coerce_position(position)
        event_id = keys.event_id(str(event_name))
        slot_id = (position_id or "").strip() or keys.position_slot(position_value)
        parsed = keys.parse_position_slot(slot_id)
        if parsed is None or parsed[0] != position_value:
            raise ValidationError("Position ID does not match the position")

        expected = {
            "chest_no": str(chest_no).strip(),
            "student_name": str(student_name).strip(),
            "school_name": str(school_name).strip(),
        }
        try:
            self.store.delete(SCORES, {"event_id": event_id, "slot_id": slot_id}, expected=expected)
        except ConditionFailedError as exc:
            raise RecordNotFound(
                "Winner record not found or details don't match. Please verify the information."
            ) from exc

        self._drop_empty_metadata(event_id)
        logger.info("Deleted winner %s/%s", event_id, slot_id)
        return {
            "success": True,
            "message": (
                f"Successfully deleted winner: {expected['student_name']} ({expected['chest_no']}) "
                f"from {str(event_name).strip()}"
            ),
        }

    def list_events(self) -> List[Dict[str, Any]]:
        rows = self.store.scan(SCORES, where={"slot_id": keys.METADATA_SLOT})
        events = [
            {
                "eventId": row.get("event_id"),
                "eventName": row.get("event_name"),
                "eventType": row.get("event_type") or INDIVIDUAL,
                "totalWinnersRecorded": row.get("total_winners_recorded"),
                "recordedAt": row.get("recorded_at"),
            }
            for row in rows
        ]
        events.sort(key=lambda item: item.get("recordedAt") or "", reverse=True)
        return events

    def event_results(self, event_id: str) -> List[Dict[str, Any]]:
        """Winner and team slots of one event with the exact keys edit and delete expect."""

        event_value = (event_id or "").strip()
        if not event_value:
            raise ValidationError("Event ID is required")
        rows = [row for row in self.store.query(SCORES, event_value) if keys.is_result_slot(row.get("slot_id", ""))]
        if not rows:
            raise EventNotFound(f"No results recorded for '{event_value}'")
        return [normalise_score_row(row) for row in rows]

    # ---- metadata bookkeeping -------------------------------------------------------

    def _ensure_metadata(self, event_id: str, event_name: str, event_type: str, timestamp: str) -> None:
        metadata_key = {"event_id": event_id, "slot_id": keys.METADATA_SLOT}
        if self.store.get(SCORES, metadata_key) is not None:
            return
        slots = [row for row in self.store.query(SCORES, event_id) if keys.is_result_slot(row.get("slot_id", ""))]
        self.store.put(SCORES, self._metadata_item(event_id, event_name, event_type, len(slots), timestamp))

    def _drop_empty_metadata(self, event_id: str) -> None:
        remaining = self.store.query(SCORES, event_id)
        if any(keys.is_result_slot(row.get("slot_id", "")) for row in remaining):
            return
        if any(row.get("slot_id") == keys.METADATA_SLOT for row in remaining):
            self.store.delete(SCORES, {"event_id": event_id, "slot_id": keys.METADATA_SLOT})
            logger.info("Removed metadata for %s after its last result was deleted", event_id)


def normalise_score_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "eventId": row.get("event_id"),
        "positionId": row.get("slot_id"),
        "eventName": row.get("event_name"),
        "eventType": row.get("event_type") or INDIVIDUAL,
        "position": row.get("position"),
        "chestNo": row.get("chest_no"),
        "studentName": row.get("student_name"),
        "teamName": row.get("team_name"),
        "schoolName": row.get("school_name"),
        "points": row.get("points"),
        "recordedAt": row.get("recorded_at"),
    }
