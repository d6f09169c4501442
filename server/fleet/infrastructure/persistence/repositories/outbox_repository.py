# server/fleet/infrastructure/persistence/repositories/outbox_repository.py
from __future__ import annotations
"""
Repository Outbox : opérations CRUD bas niveau.

Points clés :
- `insert()` ne fait qu'un flush : la ligne part dans la MÊME transaction que
  la mutation machine qui l'a produite (commit par le service).
- `fetch_due(..., as_of=...)` : pivot temporel paramétrable (par défaut: now UTC).
- On considère les évènements à traiter avec status IN (PENDING, DELIVERING) :
  pour un DELIVERING, `next_attempt_at` est la fin du lease posé au claim.
- Les transitions d'état (mark_*) flushent ; le worker commit après chacune.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from fleet.core.utils.datetime import as_utc
from fleet.infrastructure.persistence.database.models.outbox_event import (
    OutboxEvent,
    OutboxStatus,
)
from fleet.infrastructure.persistence.errors import storage_errors


class OutboxRepository:
    def __init__(self, session: Session):
        self.s = session

    # --- Create ---------------------------------------------------------------

    def insert(
        self,
        type_: str,
        payload: dict,
        machine_id: Optional[str],
        next_attempt_at: datetime | None = None,
    ) -> OutboxEvent:
        """Insère un évènement PENDING planifié à `next_attempt_at` (now UTC par défaut)."""
        evt = OutboxEvent(
            id=uuid.uuid4().hex,
            type=type_,
            payload=payload,
            status=OutboxStatus.PENDING,
            attempts=0,
            next_attempt_at=as_utc(next_attempt_at) if next_attempt_at else datetime.now(timezone.utc),
            machine_id=machine_id,
        )
        with storage_errors("outbox insert"):
            self.s.add(evt)
            self.s.flush()
        return evt

    # --- Read ----------------------------------------------------------------

    def get(self, event_id: str) -> Optional[OutboxEvent]:
        with storage_errors("outbox get"):
            return self.s.get(OutboxEvent, event_id)

    def fetch_due(
        self,
        *,
        limit: Optional[int] = None,
        as_of: Optional[datetime] = None,
        include_status: Sequence[OutboxStatus] = (OutboxStatus.PENDING, OutboxStatus.DELIVERING),
    ) -> list[OutboxEvent]:
        """
        Retourne les évènements à livrer :
        - status ∈ include_status (par défaut: pending, delivering)
        - next_attempt_at <= pivot (DELIVERING : lease expiré)
        - triés par next_attempt_at asc puis created_at, limit optionnelle
        """
        pivot = as_of or datetime.now(timezone.utc)

        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status.in_(include_status),
                or_(
                    OutboxEvent.next_attempt_at.is_(None),
                    OutboxEvent.next_attempt_at <= pivot,
                ),
            )
            .order_by(OutboxEvent.next_attempt_at.asc(), OutboxEvent.created_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)

        with storage_errors("outbox fetch"):
            return list(self.s.scalars(stmt))

    def list_for_machine(self, machine_id: str, *, type_: Optional[str] = None) -> list[OutboxEvent]:
        stmt = select(OutboxEvent).where(OutboxEvent.machine_id == machine_id)
        if type_:
            stmt = stmt.where(OutboxEvent.type == type_)
        stmt = stmt.order_by(OutboxEvent.created_at.asc())
        with storage_errors("outbox list"):
            return list(self.s.scalars(stmt))

    # --- Update ---------------------------------------------------------------

    def mark_delivering(self, event_id: str, lease_until: datetime) -> int:
        """
        Passe en DELIVERING jusqu'à `lease_until` et incrémente attempts.
        Retourne la valeur d'`attempts`.
        """
        evt = self.get(event_id)
        if not evt:
            return 0
        evt.status = OutboxStatus.DELIVERING
        evt.next_attempt_at = as_utc(lease_until)
        evt.attempts = (evt.attempts or 0) + 1
        evt.updated_at = datetime.now(timezone.utc)
        with storage_errors("outbox update"):
            self.s.flush()
        return evt.attempts

    def mark_retry(self, event_id: str, when: datetime, reason: str | None = None) -> None:
        """Reprogramme en PENDING à 'when' (sans modifier attempts ici)."""
        evt = self.get(event_id)
        if not evt:
            return
        evt.status = OutboxStatus.PENDING
        evt.next_attempt_at = as_utc(when)
        if reason:
            evt.last_error = reason
        evt.updated_at = datetime.now(timezone.utc)
        with storage_errors("outbox update"):
            self.s.flush()

    def mark_delivered(self, event_id: str, receipt: dict | None = None) -> None:
        evt = self.get(event_id)
        if not evt:
            return
        evt.status = OutboxStatus.DELIVERED
        if receipt is not None:
            evt.delivery_receipt = receipt
        evt.updated_at = datetime.now(timezone.utc)
        with storage_errors("outbox update"):
            self.s.flush()

    def mark_failed(self, event_id: str, reason: str) -> None:
        evt = self.get(event_id)
        if not evt:
            return
        evt.status = OutboxStatus.FAILED
        evt.last_error = reason
        evt.updated_at = datetime.now(timezone.utc)
        with storage_errors("outbox update"):
            self.s.flush()
