from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class CatalogEvent:
    id: str
    name: str
    category: str

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


SEED_EVENTS: List[CatalogEvent] = [
    CatalogEvent("SIDI01", "100m", "track"),
    CatalogEvent("SIDI02", "200m", "track"),
    CatalogEvent("SIDI03", "400m", "track"),
    CatalogEvent("SIDI04", "800m", "track"),
    CatalogEvent("SIDI05", "1500m", "track"),
    CatalogEvent("SIDI06", "3000m", "track"),
    CatalogEvent("SIDI07", "Shot Put", "throw"),
    CatalogEvent("SIDI08", "Discus Throw", "throw"),
    CatalogEvent("SIDI09", "Javelin Throw", "throw"),
    CatalogEvent("SIDI010", "Long Jump", "jump"),
]

UNKNOWN_EVENT_NAME = "Unknown Event"
UNKNOWN_CATEGORY = "unknown"


class EventCatalog:
    """Event id -> display name and category.

    The seed list is always present; registrations may add events the seed
    does not know about. A seed entry wins over a registration-derived one.
    """

    def __init__(self, seed: Iterable[CatalogEvent] | None = None) -> None:
        self._events: Dict[str, CatalogEvent] = {}
        for event in seed if seed is not None else SEED_EVENTS:
            self._events.setdefault(event.id, event)

    def add_from_registrations(self, registrations: Iterable[Dict[str, Any]]) -> None:
        for row in registrations:
            event_id = str(row.get("event_id") or "").strip()
            if not event_id or event_id in self._events:
                continue
            self._events[event_id] = CatalogEvent(
                event_id,
                str(row.get("event_name") or "").strip() or UNKNOWN_EVENT_NAME,
                str(row.get("category") or "").strip() or UNKNOWN_CATEGORY,
            )

    def get(self, event_id: str) -> Optional[CatalogEvent]:
        return self._events.get(event_id)

    def describe(self, event_id: str) -> CatalogEvent:
        return self._events.get(event_id) or CatalogEvent(event_id, UNKNOWN_EVENT_NAME, UNKNOWN_CATEGORY)

    def events(self) -> List[CatalogEvent]:
        return list(self._events.values())
