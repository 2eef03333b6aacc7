from __future__ import annotations

import pytest

from meet_core import DataStore, SchoolRegistry, ScoreRecorder
from meet_core.errors import SchoolExists, SchoolInUse, SchoolNotFound, ValidationError


@pytest.fixture
def registry(store: DataStore) -> SchoolRegistry:
    return SchoolRegistry(store)


def test_add_and_list_schools(registry: SchoolRegistry) -> None:
    registry.add_school("St. Mary's")
    result = registry.add_school("  Alpha Academy ")

    assert result["schoolId"] == "SCHOOL#ALPHA_ACADEMY"
    assert [school["schoolName"] for school in registry.list_schools()] == ["Alpha Academy", "St. Mary's"]


def test_duplicate_school_is_a_conflict(registry: SchoolRegistry) -> None:
    registry.add_school("Alpha Academy")
    with pytest.raises(SchoolExists):
        registry.add_school("alpha academy")


def test_blank_school_name(registry: SchoolRegistry) -> None:
    with pytest.raises(ValidationError):
        registry.add_school("   ")


def test_school_with_scores_cannot_be_deleted(registry: SchoolRegistry, store: DataStore) -> None:
    registry.add_school("Alpha")
    ScoreRecorder(store).record_results(
        "individual", "100m", winners=[{"position": 1, "chestNo": "101", "name": "Asha", "school": "Alpha"}]
    )

    with pytest.raises(SchoolInUse) as excinfo:
        registry.delete_school("Alpha")

    assert "1 associated score records" in str(excinfo.value)
    assert len(registry.list_schools()) == 1


@pytest.mark.parametrize("spelling", ["alpha school", "ALPHA SCHOOL", "Alpha School!"])
def test_school_in_use_matches_normalised_name(registry: SchoolRegistry, store: DataStore, spelling: str) -> None:
    registry.add_school("Alpha School")
    ScoreRecorder(store).record_results(
        "individual", "200m", winners=[{"position": 2, "chestNo": "201", "name": "Ben", "school": "Alpha School"}]
    )

    with pytest.raises(SchoolInUse):
        registry.delete_school(spelling)

    assert [school["schoolId"] for school in registry.list_schools()] == ["SCHOOL#ALPHA_SCHOOL"]


def test_unreferenced_school_can_be_deleted(registry: SchoolRegistry) -> None:
    registry.add_school("Beta")

    assert registry.delete_school("Beta")["success"] is True
    assert registry.list_schools() == []
    with pytest.raises(SchoolNotFound):
        registry.delete_school("Beta")
