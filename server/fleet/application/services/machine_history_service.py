from __future__ import annotations
"""server/fleet/application/services/machine_history_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
QuickChecks et évènements libres d'une machine.

- Écritures : transition de l'agrégat + compare-and-set (AggregateWriter)
- Lectures  : pipeline SQL (HistoryQueryService) ou élément 0 seul (latest_*)

L'utilisateur agissant est toujours passé explicitement (`actor_id`).
"""
import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from fleet.core.config import settings
from fleet.core.utils.datetime import utcnow
from fleet.domain.errors import Result, not_found
from fleet.domain.machine import Machine
from fleet.domain.records import (
    HistoryCollection,
    MachineEvent,
    QuickCheckItem,
    QuickCheckRecord,
    QuickCheckResult,
)
from fleet.application.services.aggregate_writer import AggregateWriter
from fleet.application.services.event_type_catalog import EventTypeCatalog
from fleet.application.services.history_query_service import HistoryPage, HistoryQueryService
from fleet.infrastructure.messaging.events import EventTypeUsed
from fleet.infrastructure.messaging.outbox import Outbox
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.history_pipeline import EventFilter, QuickCheckFilter
from fleet.infrastructure.persistence.repositories.history_store import HistoryStore
from fleet.infrastructure.persistence.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


def _as_item(raw: QuickCheckItem | Mapping[str, Any]) -> QuickCheckItem:
    if isinstance(raw, QuickCheckItem):
        return raw
    return QuickCheckItem(name=raw.get("name"), result=raw.get("result"), description=raw.get("description"))


class MachineHistoryService:
    def __init__(self, session: Session, *, catalog: Optional[EventTypeCatalog] = None) -> None:
        self.s = session
        self.writer = AggregateWriter(session)
        self.store = HistoryStore(session)
        self.queries = HistoryQueryService(session)
        self.catalog = catalog or EventTypeCatalog(session)
        self.outbox = Outbox(OutboxRepository(session))

    # ------------------------------------------------------------------
    # QuickChecks
    # ------------------------------------------------------------------
    def add_quick_check(
        self,
        machine_id: str,
        actor_id: str,
        *,
        result: QuickCheckResult | str,
        items: Iterable[QuickCheckItem | Mapping[str, Any]],
        responsible_name: str,
        responsible_worker_id: str,
        observations: Optional[str] = None,
        now=None,
    ) -> Result[QuickCheckRecord]:
        record = QuickCheckRecord(
            result=result,
            items=tuple(_as_item(i) for i in (items or ())),
            responsible_name=responsible_name or "",
            responsible_worker_id=responsible_worker_id or "",
            executed_by_id=actor_id,
            observations=observations,
            created_at=now or utcnow(),
        )
        res = self.writer.mutate(
            machine_id,
            lambda m: m.add_quick_check_record(record, cap=settings.QUICKCHECK_HISTORY_CAP),
            operation="add_quick_check",
        )
        if res.ok:
            logger.info(
                "quickcheck added",
                extra={"machine_id": machine_id, "quickcheck_id": res.value.id, "result": res.value.result.value},
            )
        return res

    def get_quick_check_history(
        self,
        machine_id: str,
        flt: Optional[QuickCheckFilter] = None,
        *,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Result[HistoryPage]:
        return self.queries.query(machine_id, HistoryCollection.QUICK_CHECKS, flt, page=page, limit=limit)

    def latest_quick_check(self, machine_id: str) -> Result[Optional[QuickCheckRecord]]:
        latest = self.store.latest(machine_id, HistoryCollection.QUICK_CHECKS)
        if not latest.found:
            return not_found(f"Machine {machine_id} not found", "machine_id")
        return Result.success(mappers.quick_check_from_dict(latest.entry) if latest.entry else None)

    def get_quick_check_items_template(self, machine_id: str) -> Result[list[dict]]:
        """Items du dernier QuickCheck (nom + description), sans les résultats."""
        res = self.latest_quick_check(machine_id)
        if not res.ok:
            return Result.failure(res.error)
        if res.value is None:
            return Result.success([])
        return Result.success([{"name": i.name, "description": i.description} for i in res.value.items])

    def count_disapproved_quick_checks(self, machine_id: str) -> Result[int]:
        if not self.store.exists(machine_id):
            return not_found(f"Machine {machine_id} not found", "machine_id")
        return Result.success(
            self.store.count(
                machine_id,
                HistoryCollection.QUICK_CHECKS,
                QuickCheckFilter(result=QuickCheckResult.DISAPPROVED.value),
            )
        )

    # ------------------------------------------------------------------
    # Évènements
    # ------------------------------------------------------------------
    def add_event(
        self,
        machine_id: str,
        actor_id: str,
        *,
        type_id: str,
        title: str,
        description: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        now=None,
    ) -> Result[MachineEvent]:
        event = MachineEvent(
            type_id=type_id,
            title=title,
            description=description,
            created_by=actor_id,
            created_at=now or utcnow(),
            metadata=metadata,
        )
        # Validation avant la lecture du catalogue (pas d'I/O pour une entrée invalide)
        check = Machine.validate_event(event)
        if not check.ok:
            return check
        known = self.catalog.require_active(type_id)
        if not known.ok:
            return Result.failure(known.error)

        res = self.writer.mutate(
            machine_id,
            lambda m: m.add_event(event, cap=settings.EVENTS_HISTORY_CAP),
            operation="add_event",
            after=lambda m, ev: self.outbox.publish(EventTypeUsed(type_id=ev.type_id, machine_id=m.id)),
        )
        if res.ok:
            logger.info("event added", extra={"machine_id": machine_id, "event_id": res.value.id, "type_id": type_id})
        return res

    def get_events_history(
        self,
        machine_id: str,
        flt: Optional[EventFilter] = None,
        *,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Result[HistoryPage]:
        return self.queries.query(machine_id, HistoryCollection.EVENTS, flt, page=page, limit=limit)

    def latest_event(self, machine_id: str) -> Result[Optional[MachineEvent]]:
        latest = self.store.latest(machine_id, HistoryCollection.EVENTS)
        if not latest.found:
            return not_found(f"Machine {machine_id} not found", "machine_id")
        return Result.success(mappers.event_from_dict(latest.entry) if latest.entry else None)

    def count_events_by_type(self, machine_id: str) -> Result[dict[str, int]]:
        if not self.store.exists(machine_id):
            return not_found(f"Machine {machine_id} not found", "machine_id")
        return Result.success(self.store.count_by(machine_id, HistoryCollection.EVENTS, "type_id"))
