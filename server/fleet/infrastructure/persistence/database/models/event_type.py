from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/event_type.py
~~~~~~~~~~~~~~~~~~~~~~~~
Catalogue (participatif) des types d'évènements machine.
"""
import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from fleet.infrastructure.persistence.database.base import Base
from fleet.infrastructure.persistence.database.models.types import JSONPortable, TstzPortable


class EventType(Base):
    __tablename__ = "machine_event_types"

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(100))
    normalized_name: Mapped[str] = mapped_column(sa.String(100), unique=True, index=True)
    languages: Mapped[list] = mapped_column(JSONPortable(), nullable=False, default=list)
    system_generated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    times_used: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True, index=True)
    created_by: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc)
    )
