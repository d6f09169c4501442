from __future__ import annotations

"""server/fleet/infrastructure/persistence/repositories/machine_repository.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Repository pour les lignes `machines` (création, recherches).
- Le repo **reçoit** une Session SQLAlchemy fournie par l'appelant.
- Il ne crée ni ne ferme la session, et ne commit pas.
- Les mutations d'agrégat passent par HistoryStore.commit (compare-and-set).
"""

from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleet.domain.machine import Machine
from fleet.domain.records import MachineStatus
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.database.models.machine import MachineDocument
from fleet.infrastructure.persistence.errors import storage_errors


class MachineRepository:
    """Accès de haut niveau aux Machines."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def serial_exists(self, serial_number: str) -> bool:
        stmt = select(MachineDocument.id).where(MachineDocument.serial_number == serial_number)
        with storage_errors("serial lookup"):
            return self.db.scalar(stmt) is not None

    def create(self, machine: Machine) -> Machine:
        """
        Insère la machine **sans commit** (l'appelant décide du commit/rollback).
        `flush()` fait remonter tout de suite une violation d'unicité.
        """
        row = mappers.machine_to_row(machine)
        with storage_errors("machine insert"):
            self.db.add(row)
            self.db.flush()
        machine.dirty_fields.clear()
        return machine

    def get(self, machine_id: str) -> Optional[Machine]:
        # relecture forcée : les compare-and-set passent par des UPDATE Core
        stmt = (
            select(MachineDocument)
            .where(MachineDocument.id == machine_id)
            .execution_options(populate_existing=True)
        )
        with storage_errors("machine get"):
            row = self.db.scalars(stmt).one_or_none()
        return mappers.machine_from_row(row) if row is not None else None

    def ids_by_status(self, status: MachineStatus) -> list[str]:
        stmt = select(MachineDocument.id).where(MachineDocument.status == status.value).order_by(MachineDocument.id)
        with storage_errors("machine search"):
            return list(self.db.scalars(stmt))

    def iter_scheduled(self) -> Iterator[tuple[str, Optional[dict]]]:
        """
        (id, usage_schedule brut) des machines ACTIVE ayant un programme d'utilisation.
        Le filtre « jour d'opération » se fait côté appelant (domaine).
        """
        stmt = (
            select(MachineDocument.id, MachineDocument.usage_schedule)
            .where(
                MachineDocument.status == MachineStatus.ACTIVE.value,
                MachineDocument.usage_schedule.is_not(None),
            )
            .order_by(MachineDocument.id)
        )
        with storage_errors("machine search"):
            rows = self.db.execute(stmt).all()
        for r in rows:
            yield r.id, r.usage_schedule
