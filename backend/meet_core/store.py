from __future__ import annotations

import datetime as dt
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .errors import ConditionFailedError, PreconditionFailedError, StorageError


logger = logging.getLogger(__name__)

BATCH_LIMIT = 25
SCAN_PAGE_SIZE = 1000

# logical table -> (partition key, sort key)
KEY_SCHEMA: Dict[str, Tuple[str, Optional[str]]] = {
    "scores": ("event_id", "slot_id"),
    "schools": ("school_id", None),
    "participants": ("clear_id", None),
    "registrations": ("event_id", "player_clear_id"),
}

Row = Dict[str, Any]


def utc_now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class DataStore:
    """Key-value document store backed by Supabase tables or local JSON files.

    Every logical table has a partition key and an optional sort key (see
    ``KEY_SCHEMA``). When Supabase credentials are present all calls go to the
    PostgREST API; otherwise rows live in ``<data_dir>/<table>.json``. Both
    backends share the same precondition semantics.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        """Initialize the DataStore.

        Args:
            data_dir: Directory holding the local JSON tables. Defaults to
                ``MEET_DATA_DIR`` or ``backend/data``.
        """
        env_dir = os.getenv("MEET_DATA_DIR")
        if data_dir is not None:
            self.data_dir = Path(data_dir)
        elif env_dir:
            self.data_dir = Path(env_dir)
        else:
            self.data_dir = Path(__file__).parent.parent / "data"

        # Supabase configuration
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.tables = {
            "scores": os.getenv("SUPABASE_SCORES_TABLE", "scores"),
            "schools": os.getenv("SUPABASE_SCHOOLS_TABLE", "schools"),
            "participants": os.getenv("SUPABASE_PARTICIPANTS_TABLE", "participants"),
            "registrations": os.getenv("SUPABASE_REGISTRATIONS_TABLE", "registrations"),
        }

    @property
    def remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def key_fields(self, table: str) -> Tuple[str, Optional[str]]:
        try:
            return KEY_SCHEMA[table]
        except KeyError:
            raise ValueError(f"Unknown table '{table}'") from None

    def key_of(self, table: str, item: Row) -> Row:
        partition, sort = self.key_fields(table)
        key = {partition: item.get(partition)}
        if sort:
            key[sort] = item.get(sort)
        return key

    # ------------------------------------------------------------------
    # Document store operations

    def get(self, table: str, key: Row) -> Optional[Row]:
        self._check_key(table, key)
        if not self.remote:
            for row in self._load_local(table):
                if self._matches(row, key):
                    return dict(row)
            return None

        params = {"select": "*", "limit": 1, **self._eq_filters(key)}
        rows = self._send("get", table, params)
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    def query(self, table: str, partition_value: Any, sort_prefix: str | None = None) -> List[Row]:
        """Return every row of one partition ordered by sort key."""

        partition, sort = self.key_fields(table)
        if not self.remote:
            rows = [
                dict(row)
                for row in self._load_local(table)
                if row.get(partition) == partition_value
                and (not sort_prefix or str(row.get(sort) or "").startswith(sort_prefix))
            ]
            if sort:
                rows.sort(key=lambda row: str(row.get(sort) or ""))
            return rows

        params: Dict[str, Any] = {"select": "*", partition: f"eq.{partition_value}"}
        if sort:
            params["order"] = f"{sort}.asc"
            if sort_prefix:
                params[sort] = f"like.{sort_prefix}*"
        rows = self._send("get", table, params)
        return [row for row in rows or [] if isinstance(row, dict)]

    def scan(
        self,
        table: str,
        where: Row | None = None,
        predicate: Callable[[Row], bool] | None = None,
    ) -> List[Row]:
        """Full-table scan.

        ``where`` holds equality filters the backend can apply; ``predicate``
        is always evaluated client side after the rows are fetched.
        """

        self.key_fields(table)
        if not self.remote:
            rows = [dict(row) for row in self._load_local(table)]
            if where:
                rows = [row for row in rows if self._matches(row, where)]
        else:
            rows = []
            offset = 0
            while True:
                params: Dict[str, Any] = {
                    "select": "*",
                    "limit": SCAN_PAGE_SIZE,
                    "offset": offset,
                    **self._eq_filters(where or {}),
                }
                page = self._send("get", table, params)
                page_rows = [row for row in page or [] if isinstance(row, dict)]
                rows.extend(page_rows)
                if len(page_rows) < SCAN_PAGE_SIZE:
                    break
                offset += SCAN_PAGE_SIZE

        if predicate is not None:
            rows = [row for row in rows if predicate(row)]
        return rows

    def put(self, table: str, item: Row, condition: str | None = None) -> Row:
        """Insert or overwrite ``item``.

        ``condition`` is ``None``, ``"not_exists"`` or ``"exists"``; a failed
        precondition raises :class:`ConditionFailedError`.
        """

        if condition not in (None, "not_exists", "exists"):
            raise ValueError(f"Unsupported put condition '{condition}'")
        key = self.key_of(table, item)
        self._check_key(table, key)

        if not self.remote:
            rows = self._load_local(table)
            index = self._find_index(rows, key)
            if condition == "not_exists" and index is not None:
                raise ConditionFailedError(f"{table} item already exists")
            if condition == "exists" and index is None:
                raise ConditionFailedError(f"{table} item does not exist")
            if index is None:
                rows.append(dict(item))
            else:
                rows[index] = dict(item)
            self._save_local(table, rows)
            return dict(item)

        if condition == "exists":
            rows = self._send(
                "patch",
                table,
                {"select": "*", **self._eq_filters(key)},
                payload=item,
                prefer="return=representation",
            )
            if not rows:
                raise ConditionFailedError(f"{table} item does not exist")
            return rows[0]

        if condition == "not_exists":
            try:
                rows = self._send(
                    "post",
                    table,
                    {"select": "*"},
                    payload=item,
                    prefer="return=representation",
                    raise_status=True,
                )
            except httpx.HTTPStatusError as exc:
                if exc.response is not None and exc.response.status_code == 409:
                    raise ConditionFailedError(f"{table} item already exists") from exc
                raise self._storage_error(exc, f"put {table}") from exc
        else:
            rows = self._send(
                "post",
                table,
                {"select": "*", "on_conflict": self._conflict_target(table)},
                payload=[item],
                prefer="resolution=merge-duplicates,return=representation",
            )

        if isinstance(rows, list) and rows:
            return rows[0]
        return dict(item)

    def batch_write(self, table: str, items: List[Row]) -> List[Row]:
        """Best-effort multi-put; returns the items the backend did not process."""

        if len(items) > BATCH_LIMIT:
            raise PreconditionFailedError(
                f"Cannot save: too many entries at once ({len(items)} > {BATCH_LIMIT})"
            )
        if not items:
            return []
        for item in items:
            self._check_key(table, self.key_of(table, item))

        if not self.remote:
            rows = self._load_local(table)
            for item in items:
                index = self._find_index(rows, self.key_of(table, item))
                if index is None:
                    rows.append(dict(item))
                else:
                    rows[index] = dict(item)
            self._save_local(table, rows)
            return []

        try:
            self._send(
                "post",
                table,
                {"on_conflict": self._conflict_target(table)},
                payload=list(items),
                prefer="resolution=merge-duplicates,return=representation",
                raise_status=True,
            )
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            if status_code in (429, 503):
                logger.warning("Supabase throttled batch write to %s (HTTP %s)", table, status_code)
                return list(items)
            raise self._storage_error(exc, f"batch write {table}") from exc
        return []

    def update(self, table: str, key: Row, fields: Row) -> Row:
        """Set ``fields`` on an existing item and return the updated row."""

        self._check_key(table, key)
        if not self.remote:
            rows = self._load_local(table)
            index = self._find_index(rows, key)
            if index is None:
                raise ConditionFailedError(f"{table} item does not exist")
            rows[index] = {**rows[index], **fields}
            self._save_local(table, rows)
            return dict(rows[index])

        rows = self._send(
            "patch",
            table,
            {"select": "*", **self._eq_filters(key)},
            payload=fields,
            prefer="return=representation",
        )
        if not rows:
            raise ConditionFailedError(f"{table} item does not exist")
        return rows[0]

    def delete(self, table: str, key: Row, expected: Row | None = None) -> Optional[Row]:
        """Delete one item, optionally only when ``expected`` fields match exactly.

        Without ``expected`` a missing item is not an error and ``None`` is
        returned.
        """

        self._check_key(table, key)
        if not self.remote:
            rows = self._load_local(table)
            index = self._find_index(rows, key)
            if index is None:
                if expected:
                    raise ConditionFailedError(f"{table} item does not exist")
                return None
            row = rows[index]
            if expected and not self._matches(row, expected):
                raise ConditionFailedError(f"{table} item does not match")
            del rows[index]
            self._save_local(table, rows)
            return dict(row)

        filters = {**self._eq_filters(key), **self._eq_filters(expected or {})}
        rows = self._send("delete", table, filters, prefer="return=representation")
        if isinstance(rows, list) and rows:
            return rows[0]
        if expected:
            raise ConditionFailedError(f"{table} item does not exist or does not match")
        return None

    # ---- internal Supabase helpers -------------------------------------------------

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{self.tables[table]}"

    def _supabase_headers(self, prefer: str | None = None, include_content_profile: bool = True) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if include_content_profile and self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _send(
        self,
        method: str,
        table: str,
        params: Dict[str, Any],
        payload: Any = None,
        prefer: str | None = None,
        raise_status: bool = False,
    ) -> Any:
        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers(prefer, include_content_profile=method != "get")
        kwargs: Dict[str, Any] = {"params": params, "headers": headers}
        if payload is not None:
            headers["Content-Type"] = "application/json"
            kwargs["json"] = payload

        try:
            with httpx.Client(timeout=10.0) as client:
                response = getattr(client, method)(endpoint, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            if raise_status:
                raise
            raise self._storage_error(exc, f"{method.upper()} {table}") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"Supabase {method.upper()} {table} failed: {exc}") from exc

    def _storage_error(self, exc: httpx.HTTPStatusError, action: str) -> StorageError:
        detail = self._extract_supabase_detail(exc.response)
        logger.warning("Supabase %s failed (%s)", action, detail or exc)
        return StorageError(detail or f"Supabase {action} failed: {exc}")

    def _conflict_target(self, table: str) -> str:
        partition, sort = self.key_fields(table)
        return f"{partition},{sort}" if sort else partition

    @staticmethod
    def _eq_filters(fields: Row) -> Dict[str, str]:
        filters: Dict[str, str] = {}
        for name, value in fields.items():
            if isinstance(value, bool):
                filters[name] = f"eq.{str(value).lower()}"
            elif value is None:
                filters[name] = "is.null"
            else:
                filters[name] = f"eq.{value}"
        return filters

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        if isinstance(payload, list) and payload:
            first = payload[0]
            if isinstance(first, dict):
                for key in ("message", "detail", "error", "hint", "code"):
                    value = first.get(key)
                    if isinstance(value, str) and value.strip():
                        return value.strip()
        return None

    # ---- local JSON helpers ---------------------------------------------------------

    def local_path(self, table: str) -> Path:
        self.key_fields(table)
        return self.data_dir / f"{table}.json"

    def _load_local(self, table: str) -> List[Row]:
        data = self._read_json_file(self.local_path(table), [])
        return [row for row in data if isinstance(row, dict)]

    def _save_local(self, table: str, rows: List[Row]) -> None:
        self._write_json_file(self.local_path(table), rows)

    def _check_key(self, table: str, key: Row) -> None:
        partition, sort = self.key_fields(table)
        for field in (partition, sort):
            if field and (key.get(field) is None or key.get(field) == ""):
                raise ValueError(f"Missing key field '{field}' for table '{table}'")

    @staticmethod
    def _matches(row: Row, fields: Row) -> bool:
        return all(row.get(name) == value for name, value in fields.items())

    def _find_index(self, rows: List[Row], key: Row) -> Optional[int]:
        for index, row in enumerate(rows):
            if self._matches(row, key):
                return index
        return None

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as exc:
            raise StorageError(f"Failed to write local data store {path}: {exc}") from exc
