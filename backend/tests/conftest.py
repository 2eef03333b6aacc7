from __future__ import annotations

import pytest

from meet_core import DataStore

SUPABASE_ENV = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SERVICE_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SCHEMA",
    "SUPABASE_SCORES_TABLE",
    "SUPABASE_SCHOOLS_TABLE",
    "SUPABASE_PARTICIPANTS_TABLE",
    "SUPABASE_REGISTRATIONS_TABLE",
    "MEET_DATA_DIR",
    "SCOREBOARD_TIE_BREAK",
)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in SUPABASE_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def store(tmp_path) -> DataStore:
    return DataStore(data_dir=tmp_path)
