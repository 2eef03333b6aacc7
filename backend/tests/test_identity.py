from __future__ import annotations

from typing import Any, Dict

import pytest

from meet_core import DataStore, IdentityService
from meet_core.errors import NotFoundError, ParticipantNotFound, StorageError, ValidationError


def _participant(clear_id: str, created_at: str, **fields: Any) -> Dict[str, Any]:
    return {
        "clear_id": clear_id,
        "full_name": "Asha Menon",
        "registration_number": "2341001",
        "institutional_email": "asha@inst.edu",
        "school_short": "SOE",
        "created_at": created_at,
        **fields,
    }


@pytest.fixture
def identity(store: DataStore) -> IdentityService:
    store.put("participants", _participant("CLR-1", "2024-01-01T00:00:00Z"))
    store.put("participants", _participant("CLR-2", "2024-01-02T00:00:00Z", registration_number="2341001-B"))
    store.put(
        "participants",
        _participant("CLR-9", "2024-01-03T00:00:00Z", full_name="Ben", registration_number="9", institutional_email="ben@inst.edu"),
    )
    for clear_id in ("CLR-1", "CLR-2", "CLR-9"):
        store.put("registrations", {"event_id": "SIDI01", "player_clear_id": clear_id, "attendance": False})
    store.put("registrations", {"event_id": "SIDI07", "player_clear_id": "CLR-1", "attendance": False})
    store.put(
        "registrations",
        {"event_id": "CUSTOM1", "player_clear_id": "CLR-2", "event_name": "Chess", "category": "indoor"},
    )
    return IdentityService(store)


def test_resolve_by_email_is_case_insensitive(identity: IdentityService) -> None:
    records = identity.resolve("ASHA@inst.edu")
    assert [row["clear_id"] for row in records] == ["CLR-1", "CLR-2"]


def test_resolve_by_clear_id_expands_to_duplicates(identity: IdentityService) -> None:
    assert [row["clear_id"] for row in identity.resolve("CLR-2")] == ["CLR-1", "CLR-2"]
    assert [row["clear_id"] for row in identity.resolve("9")] == ["CLR-9"]
    assert identity.resolve("nobody") == []


def test_lookup_returns_canonical_duplicates_and_events(identity: IdentityService) -> None:
    result = identity.lookup("CLR-2")

    assert result["participant"]["clearId"] == "CLR-2"
    assert result["duplicates"] == ["CLR-1"]
    events = {event["id"]: event for event in result["registeredEvents"]}
    assert events["SIDI01"]["name"] == "100m"
    assert events["SIDI07"]["category"] == "throw"
    assert events["CUSTOM1"]["name"] == "Chess"


def test_lookup_unknown_participant(identity: IdentityService) -> None:
    with pytest.raises(ParticipantNotFound):
        identity.lookup("ghost@inst.edu")


def test_mark_attendance_fans_out_to_duplicates(identity: IdentityService, store: DataStore) -> None:
    result = identity.mark_attendance("asha@inst.edu", "SIDI01")

    assert result["updatedCount"] == 2
    assert result["failedCount"] == 0
    assert result["clearIds"] == ["CLR-1", "CLR-2"]
    attendance = {row["player_clear_id"]: row["attendance"] for row in store.query("registrations", "SIDI01")}
    assert attendance == {"CLR-1": True, "CLR-2": True, "CLR-9": False}


def test_unmark_attendance(identity: IdentityService, store: DataStore) -> None:
    identity.mark_attendance("2341001", "SIDI01")
    result = identity.unmark_attendance("CLR-1", "SIDI01")

    assert result["updatedCount"] == 2
    assert all(row["attendance"] is False for row in store.query("registrations", "SIDI01"))


def test_mark_attendance_partial_failure_reports_counts(
    monkeypatch: pytest.MonkeyPatch, identity: IdentityService, store: DataStore
) -> None:
    real_update = store.update

    def flaky_update(table, key, fields):
        if key.get("player_clear_id") == "CLR-2":
            raise StorageError("throttled")
        return real_update(table, key, fields)

    monkeypatch.setattr(store, "update", flaky_update)

    result = identity.mark_attendance("asha@inst.edu", "SIDI01")

    assert result["updatedCount"] == 1
    assert result["failedCount"] == 1


def test_mark_attendance_without_registration(identity: IdentityService) -> None:
    with pytest.raises(NotFoundError):
        identity.mark_attendance("ben@inst.edu", "SIDI07")
    with pytest.raises(ParticipantNotFound):
        identity.mark_attendance("ghost@inst.edu", "SIDI01")


def test_assign_chest_number_touches_only_one_record(identity: IdentityService, store: DataStore) -> None:
    identity.assign_chest_number("CLR-1", "0421")

    assert store.get("participants", {"clear_id": "CLR-1"})["chest_number"] == "0421"
    assert "chest_number" not in store.get("participants", {"clear_id": "CLR-2"})


@pytest.mark.parametrize("chest", ["12", "12345", "12a", ""])
def test_assign_chest_number_validates_format(identity: IdentityService, chest: str) -> None:
    with pytest.raises(ValidationError):
        identity.assign_chest_number("CLR-1", chest)


def test_assign_chest_number_unknown_clear_id(identity: IdentityService) -> None:
    with pytest.raises(ParticipantNotFound):
        identity.assign_chest_number("CLR-404", "123")


def test_event_roster(identity: IdentityService) -> None:
    roster = identity.event_roster("SIDI01")

    assert [entry["clearId"] for entry in roster] == ["CLR-1", "CLR-2", "CLR-9"]
    assert roster[0]["duplicateCount"] == 1
    assert roster[2]["duplicateCount"] == 0


def test_catalog_merges_seed_and_registrations(identity: IdentityService) -> None:
    ids = [event.id for event in identity.catalog().events()]

    assert ids[:10] == ["SIDI01", "SIDI02", "SIDI03", "SIDI04", "SIDI05", "SIDI06", "SIDI07", "SIDI08", "SIDI09", "SIDI010"]
    assert "CUSTOM1" in ids
