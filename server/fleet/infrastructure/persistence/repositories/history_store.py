from __future__ import annotations
"""server/fleet/infrastructure/persistence/repositories/history_store.py
~~~~~~~~~~~~~~~~~~~~~~~~
HistoryStore : chargement / écriture atomique de l'agrégat Machine et lectures
des historiques embarqués.

- `load()` relit toujours la ligne en base (populate_existing) : après un
  compare-and-set perdu, on repart de l'état réel.
- `commit()` = UPDATE ... WHERE id = :id AND version = :expected. N'écrit que les
  colonnes sales. Retourne False si la version a bougé entre-temps (l'appelant
  recharge et rejoue). Ne fait PAS le commit de transaction.
- Les lectures d'historique passent par `history_pipeline` (une requête).
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fleet.domain.machine import Machine
from fleet.domain.records import HistoryCollection
from fleet.infrastructure.persistence import history_pipeline as hp
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.database.models.machine import MachineDocument
from fleet.infrastructure.persistence.errors import storage_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawPage:
    """Page brute (entrées JSON) ; `found=False` si la machine n'existe pas."""
    found: bool
    total: int = 0
    entries: tuple[dict, ...] = ()


@dataclass(frozen=True)
class LatestEntry:
    found: bool
    entry: Optional[dict] = None


class HistoryStore:
    def __init__(self, session: Session) -> None:
        self.s = session

    @property
    def dialect_name(self) -> str:
        return self.s.get_bind().dialect.name

    # ------------------------------------------------------------------
    # Agrégat
    # ------------------------------------------------------------------
    def load(self, machine_id: str) -> Optional[Machine]:
        with storage_errors("machine load"):
            stmt = (
                select(MachineDocument)
                .where(MachineDocument.id == machine_id)
                .execution_options(populate_existing=True)
            )
            row = self.s.scalars(stmt).one_or_none()
        return mappers.machine_from_row(row) if row is not None else None

    def exists(self, machine_id: str) -> bool:
        with storage_errors("machine lookup"):
            return self.s.scalar(select(MachineDocument.id).where(MachineDocument.id == machine_id)) is not None

    def commit(self, machine: Machine) -> bool:
        """
        Compare-and-set sur `version`. True = écrit (version incrémentée sur
        l'objet, colonnes sales remises à zéro), False = conflit.
        """
        if not machine.dirty_fields:
            return True
        values = mappers.column_values(machine, sorted(machine.dirty_fields))
        expected = machine.version
        stmt = (
            update(MachineDocument)
            .where(MachineDocument.id == machine.id, MachineDocument.version == expected)
            .values(version=expected + 1, **values)
            .execution_options(synchronize_session=False)
        )
        with storage_errors("machine update"):
            res = self.s.execute(stmt)
        if res.rowcount != 1:
            logger.info(
                "compare-and-set lost",
                extra={"machine_id": machine.id, "expected_version": expected},
            )
            return False
        machine.version = expected + 1
        machine.dirty_fields.clear()
        return True

    # ------------------------------------------------------------------
    # Lectures d'historique
    # ------------------------------------------------------------------
    def fetch_page(
        self,
        machine_id: str,
        collection: HistoryCollection,
        flt: hp.QuickCheckFilter | hp.EventFilter | None,
        *,
        page: int,
        limit: int,
    ) -> RawPage:
        stmt = hp.page_statement(
            machine_id, collection, flt, page=page, limit=limit, dialect_name=self.dialect_name
        )
        with storage_errors("history query"):
            rows = self.s.execute(stmt).all()
        if not rows:
            return RawPage(found=False)
        entries = tuple(r.entry for r in rows if r.entry is not None)
        return RawPage(found=True, total=int(rows[0].total or 0), entries=entries)

    def latest(self, machine_id: str, collection: HistoryCollection) -> LatestEntry:
        with storage_errors("latest entry"):
            row = self.s.execute(hp.latest_statement(machine_id, collection)).first()
        if row is None:
            return LatestEntry(found=False)
        return LatestEntry(found=True, entry=row.entry or None)

    def count(
        self,
        machine_id: str,
        collection: HistoryCollection,
        flt: hp.QuickCheckFilter | hp.EventFilter | None = None,
    ) -> int:
        stmt = hp.count_statement(machine_id, collection, flt, self.dialect_name)
        with storage_errors("history count"):
            return int(self.s.scalar(stmt) or 0)

    def count_by(self, machine_id: str, collection: HistoryCollection, field_name: str) -> dict[str, int]:
        stmt = hp.count_by_field_statement(machine_id, collection, field_name, self.dialect_name)
        with storage_errors("history count"):
            return {r.key: int(r.n) for r in self.s.execute(stmt)}

    def raw_column(self, machine_id: str, collection: HistoryCollection) -> Optional[list[Any]]:
        """Tableau complet d'une colonne (petites collections : alarmes)."""
        col = getattr(MachineDocument, collection.value)
        with storage_errors("history read"):
            row = self.s.execute(select(MachineDocument.id, col.label("entries")).where(MachineDocument.id == machine_id)).first()
        if row is None:
            return None
        return list(row.entries or [])
