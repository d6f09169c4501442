# server/fleet/infrastructure/persistence/repositories/notification_repository.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleet.infrastructure.persistence.database.models.notification_log import NotificationLog
from fleet.infrastructure.persistence.errors import storage_errors


class NotificationRepository:
    """
    Repository pour la table notification_log.

    - Ne gère PAS les commit/rollback : c'est à la charge de l'appelant.
    - add_log(...) tronque les messages / erreurs pour éviter les blobs énormes.
    """

    def __init__(self, db: Session):
        self.db = db

    def add_log(
        self,
        *,
        provider: str,
        recipient: str,
        status: str,
        message: Optional[str],
        machine_id: Optional[str] = None,
        alarm_id: Optional[str] = None,
        outbox_event_id: Optional[str] = None,
        error_message: Optional[str] = None,
        set_sent_at: bool = False,
    ) -> NotificationLog:
        """sent_at n'est renseigné que si set_sent_at=True (succès réel)."""
        row = NotificationLog(
            provider=provider,
            recipient=recipient,
            status=status,
            message=(message[:10000] if message else None),
            error_message=(error_message[:10000] if error_message else None),
            machine_id=machine_id,
            alarm_id=alarm_id,
            outbox_event_id=outbox_event_id,
            sent_at=(datetime.now(timezone.utc) if set_sent_at else None),
        )
        with storage_errors("notification log"):
            self.db.add(row)
            self.db.flush()
        return row

    def for_machine(self, machine_id: str) -> list[NotificationLog]:
        stmt = (
            select(NotificationLog)
            .where(NotificationLog.machine_id == machine_id)
            .order_by(NotificationLog.created_at.asc())
        )
        with storage_errors("notification log"):
            return list(self.db.scalars(stmt))
