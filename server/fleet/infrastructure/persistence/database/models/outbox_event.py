from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/outbox_event.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table outbox_events : intentions (notifications, usage des types) écrites dans
la même transaction que la mutation de la machine, livrées ensuite par le worker.
"""
import enum
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from fleet.infrastructure.persistence.database.base import Base
from fleet.infrastructure.persistence.database.models.types import JSONPortable, TstzPortable


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


def StatusEnum():
    """
    Enum string portable (CHECK constraint) ; type natif `outbox_status` sur Postgres.
    """
    return sa.Enum(OutboxStatus, name="outbox_status", native_enum=True)


def _new_id() -> str:
    return uuid.uuid4().hex


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    __table_args__ = (sa.Index("ix_outbox_events_due", "status", "next_attempt_at"),)

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=_new_id)

    machine_id: Mapped[str | None] = mapped_column(
        sa.String(32), sa.ForeignKey("machines.id", ondelete="SET NULL"), nullable=True, index=True
    )

    type: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONPortable(), nullable=False)

    status: Mapped[OutboxStatus] = mapped_column(
        StatusEnum(), nullable=False, default=OutboxStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    delivery_receipt: Mapped[dict | None] = mapped_column(JSONPortable(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<OutboxEvent id={self.id} type={self.type} status={self.status} attempts={self.attempts}>"
