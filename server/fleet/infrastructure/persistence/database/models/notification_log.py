from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/notification_log.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table notification_log : une ligne par tentative de livraison à un destinataire.
"""
import uuid
import datetime as dt

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleet.infrastructure.persistence.database.base import Base
from fleet.infrastructure.persistence.database.models.types import TstzPortable


class NotificationLog(Base):
    __tablename__ = "notification_log"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    outbox_event_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    machine_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    alarm_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider: Mapped[str] = mapped_column(String(50))
    recipient: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), default="pending")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[dt.datetime | None] = mapped_column(TstzPortable(), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        TstzPortable(), default=lambda: dt.datetime.now(dt.timezone.utc)
    )
