from __future__ import annotations

import logging
from typing import Any, Dict, List

from . import keys
from .errors import ConditionFailedError, SchoolExists, SchoolInUse, SchoolNotFound, ValidationError
from .store import DataStore, utc_now_iso


logger = logging.getLogger(__name__)

SCHOOLS = "schools"
SCORES = "scores"


def school_view(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "schoolId": row.get("school_id"),
        "schoolName": row.get("school_name"),
        "createdAt": row.get("created_at"),
    }


class SchoolRegistry:
    def __init__(self, store: DataStore) -> None:
        self.store = store

    def add_school(self, school_name: str) -> Dict[str, Any]:
        name = (school_name or "").strip() if isinstance(school_name, str) else ""
        if not name:
            raise ValidationError("School name is required")
        school_id = keys.school_id(name)
        if school_id == keys.SCHOOL_PREFIX:
            raise ValidationError("School name must contain letters or digits")

        row = {"school_id": school_id, "school_name": name, "created_at": utc_now_iso()}
        try:
            self.store.put(SCHOOLS, row, condition="not_exists")
        except ConditionFailedError as exc:
            raise SchoolExists("School already exists") from exc

        logger.info("Added school %s", school_id)
        return {"success": True, "message": "School added successfully", "schoolId": school_id}

    def list_schools(self) -> List[Dict[str, Any]]:
        rows = self.store.scan(SCHOOLS)
        rows.sort(key=lambda row: str(row.get("school_name") or "").lower())
        return [school_view(row) for row in rows]

    def delete_school(self, school_name: str) -> Dict[str, Any]:
        """Delete a school that no score row refers to."""

        name = (school_name or "").strip() if isinstance(school_name, str) else ""
        if not name:
            raise ValidationError("School name is required")

        school_id = keys.school_id(name)
        # score rows carry the display name, so compare through the same id transform
        references = self.store.scan(
            SCORES,
            predicate=lambda row: keys.school_id(str(row.get("school_name") or "")) == school_id,
        )
        if references:
            raise SchoolInUse(
                f'Cannot delete school "{name}" because it has {len(references)} associated score records. '
                "Please delete all scores for this school first."
            )

        if self.store.delete(SCHOOLS, {"school_id": school_id}) is None:
            raise SchoolNotFound(f'School "{name}" not found')

        logger.info("Deleted school %s", school_id)
        return {"success": True, "message": f"Successfully deleted school: {name}"}
