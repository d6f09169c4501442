from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/machine.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table machines : une ligne = un agrégat complet.

Les trois historiques sont des colonnes JSON (tableaux) dans la ligne elle-même :
la ligne est l'unité de cohérence. `version` sert au compare-and-set.
"""
import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from fleet.infrastructure.persistence.database.base import Base
from fleet.infrastructure.persistence.database.models.types import JSONPortable, TstzPortable


class MachineDocument(Base):
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    serial_number: Mapped[str] = mapped_column(sa.String(64), unique=True, index=True)
    brand: Mapped[str] = mapped_column(sa.String(50))
    model_name: Mapped[str] = mapped_column(sa.String(50))
    nickname: Mapped[str | None] = mapped_column(sa.String(30), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(16), index=True, default="ACTIVE")
    owner_id: Mapped[str] = mapped_column(sa.String(64), index=True)
    assigned_provider_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True, index=True)

    operating_hours: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.0)
    specs: Mapped[dict] = mapped_column(JSONPortable(), nullable=False, default=dict)
    usage_schedule: Mapped[dict | None] = mapped_column(JSONPortable(none_as_null=True), nullable=True)

    # Historiques embarqués (plus récent en tête pour quick_checks / events_history)
    quick_checks: Mapped[list] = mapped_column(JSONPortable(), nullable=False, default=list)
    events_history: Mapped[list] = mapped_column(JSONPortable(), nullable=False, default=list)
    maintenance_alarms: Mapped[list] = mapped_column(JSONPortable(), nullable=False, default=list)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc)
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        TstzPortable(), nullable=False, default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<MachineDocument id={self.id} serial={self.serial_number} v={self.version}>"
