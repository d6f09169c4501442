from __future__ import annotations
"""server/fleet/application/services/history_query_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
Lecture paginée / filtrée des historiques embarqués.

query(machine_id, collection, filter, page, limit) -> HistoryPage
  - tri : created_at DESC puis position dans le tableau (ASC)
  - total et page issus de la même requête
  - page au-delà de la fin : items vides, total réel
"""
import math
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

from sqlalchemy.orm import Session

from fleet.core.config import settings
from fleet.core.utils.datetime import day_bound
from fleet.domain.errors import Result, invalid, not_found
from fleet.domain.records import HistoryCollection
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.history_pipeline import EventFilter, QuickCheckFilter
from fleet.infrastructure.persistence.repositories.history_store import HistoryStore

T = TypeVar("T")

_DECODERS: dict[HistoryCollection, Callable] = {
    HistoryCollection.QUICK_CHECKS: mappers.quick_check_from_dict,
    HistoryCollection.EVENTS: mappers.event_from_dict,
    HistoryCollection.ALARMS: mappers.alarm_from_dict,
}

_FILTERS: dict[HistoryCollection, tuple[type, ...]] = {
    HistoryCollection.QUICK_CHECKS: (QuickCheckFilter,),
    HistoryCollection.EVENTS: (EventFilter,),
    HistoryCollection.ALARMS: (),
}


@dataclass(frozen=True)
class HistoryPage(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class HistoryQueryService:
    def __init__(self, session: Session) -> None:
        self.store = HistoryStore(session)

    def query(
        self,
        machine_id: str,
        collection: HistoryCollection | str,
        flt: QuickCheckFilter | EventFilter | None = None,
        *,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Result[HistoryPage]:
        try:
            collection = HistoryCollection(collection)
        except ValueError:
            return invalid(f"Unknown history collection {collection!r}", "collection")
        limit = settings.HISTORY_DEFAULT_LIMIT if limit is None else limit

        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            return invalid("Page must be an integer >= 1", "page")
        if not isinstance(limit, int) or isinstance(limit, bool) or not (1 <= limit <= settings.HISTORY_MAX_LIMIT):
            return invalid(f"Limit must be between 1 and {settings.HISTORY_MAX_LIMIT}", "limit")
        if flt is not None and not isinstance(flt, _FILTERS[collection]):
            return invalid(f"Filter {type(flt).__name__} does not apply to {collection.value}", "filter")
        if flt is not None and flt.date_from and flt.date_to and day_bound(flt.date_from) > day_bound(flt.date_to, end=True):
            return invalid("date_from must be before date_to", "date_from")

        raw = self.store.fetch_page(machine_id, collection, flt, page=page, limit=limit)
        if not raw.found:
            return not_found(f"Machine {machine_id} not found", "machine_id")

        decode = _DECODERS[collection]
        return Result.success(
            HistoryPage(
                items=[decode(e) for e in raw.entries],
                total=raw.total,
                page=page,
                limit=limit,
                total_pages=math.ceil(raw.total / limit) if raw.total else 0,
            )
        )
