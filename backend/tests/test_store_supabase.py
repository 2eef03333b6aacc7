from __future__ import annotations

from typing import Any, Dict, List

import httpx
import pytest

from meet_core import DataStore
from meet_core import store as store_module
from meet_core.errors import ConditionFailedError, StorageError


class _RecordingClient:
    """Replays queued responses and records every request made through it."""

    calls: List[Dict[str, Any]] = []
    responses: List[httpx.Response] = []

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "_RecordingClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean up
        return None

    def _handle(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        _RecordingClient.calls.append({"method": method, "endpoint": endpoint, **kwargs})
        response = _RecordingClient.responses.pop(0)
        response.request = httpx.Request(method.upper(), endpoint)
        return response

    def get(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return self._handle("get", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return self._handle("post", endpoint, **kwargs)

    def patch(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return self._handle("patch", endpoint, **kwargs)

    def delete(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return self._handle("delete", endpoint, **kwargs)


@pytest.fixture
def remote_store(monkeypatch: pytest.MonkeyPatch, tmp_path) -> DataStore:
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co/")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "test-key")
    monkeypatch.setenv("SUPABASE_SCORES_TABLE", "meet_scores")
    monkeypatch.setattr(store_module.httpx, "Client", _RecordingClient)
    _RecordingClient.calls = []
    _RecordingClient.responses = []
    return DataStore(data_dir=tmp_path)


def _queue(*responses: httpx.Response) -> None:
    _RecordingClient.responses.extend(responses)


def test_query_uses_partition_filter_and_order(remote_store: DataStore) -> None:
    _queue(httpx.Response(200, json=[{"event_id": "EVENT#A", "slot_id": "POS#01"}]))

    rows = remote_store.query("scores", "EVENT#A", sort_prefix="POS#")

    assert rows == [{"event_id": "EVENT#A", "slot_id": "POS#01"}]
    call = _RecordingClient.calls[0]
    assert call["endpoint"] == "https://example.supabase.co/rest/v1/meet_scores"
    assert call["params"]["event_id"] == "eq.EVENT#A"
    assert call["params"]["slot_id"] == "like.POS#*"
    assert call["params"]["order"] == "slot_id.asc"
    assert call["headers"]["apikey"] == "test-key"
    assert call["headers"]["Authorization"] == "Bearer test-key"


def test_put_not_exists_conflict_raises_condition_failed(remote_store: DataStore) -> None:
    _queue(httpx.Response(409, json={"message": "duplicate key value violates unique constraint"}))

    with pytest.raises(ConditionFailedError):
        remote_store.put("schools", {"school_id": "SCHOOL#A", "school_name": "A"}, condition="not_exists")

    assert _RecordingClient.calls[0]["method"] == "post"


def test_upsert_sends_merge_duplicates(remote_store: DataStore) -> None:
    item = {"school_id": "SCHOOL#A", "school_name": "A"}
    _queue(httpx.Response(201, json=[item]))

    assert remote_store.put("schools", item) == item
    call = _RecordingClient.calls[0]
    assert call["params"]["on_conflict"] == "school_id"
    assert "resolution=merge-duplicates" in call["headers"]["Prefer"]
    assert call["json"] == [item]


def test_update_with_no_matching_rows_fails_condition(remote_store: DataStore) -> None:
    _queue(httpx.Response(200, json=[]))

    with pytest.raises(ConditionFailedError):
        remote_store.update("participants", {"clear_id": "C1"}, {"chest_number": "123"})

    call = _RecordingClient.calls[0]
    assert call["method"] == "patch"
    assert call["params"]["clear_id"] == "eq.C1"


def test_delete_applies_expected_filters(remote_store: DataStore) -> None:
    _queue(httpx.Response(200, json=[]))

    with pytest.raises(ConditionFailedError):
        remote_store.delete(
            "scores",
            {"event_id": "EVENT#A", "slot_id": "POS#01"},
            expected={"chest_no": "101", "student_name": "Asha"},
        )

    params = _RecordingClient.calls[0]["params"]
    assert params["chest_no"] == "eq.101"
    assert params["student_name"] == "eq.Asha"


def test_batch_write_throttled_reports_all_items_unprocessed(remote_store: DataStore) -> None:
    items = [{"event_id": "EVENT#A", "slot_id": "POS#01"}, {"event_id": "EVENT#A", "slot_id": "POS#02"}]
    _queue(httpx.Response(503, text="Service Unavailable"))

    assert remote_store.batch_write("scores", items) == items


def test_backend_error_detail_is_passed_through(remote_store: DataStore) -> None:
    _queue(httpx.Response(500, json={"message": "relation \"meet_scores\" does not exist"}))

    with pytest.raises(StorageError) as excinfo:
        remote_store.scan("scores")

    assert str(excinfo.value) == 'relation "meet_scores" does not exist'


def test_scan_paginates(monkeypatch: pytest.MonkeyPatch, remote_store: DataStore) -> None:
    monkeypatch.setattr(store_module, "SCAN_PAGE_SIZE", 2)
    _queue(
        httpx.Response(200, json=[{"school_id": "SCHOOL#A"}, {"school_id": "SCHOOL#B"}]),
        httpx.Response(200, json=[{"school_id": "SCHOOL#C"}]),
    )

    rows = remote_store.scan("schools")

    assert [row["school_id"] for row in rows] == ["SCHOOL#A", "SCHOOL#B", "SCHOOL#C"]
    assert [call["params"]["offset"] for call in _RecordingClient.calls] == [0, 2]
