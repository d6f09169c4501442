from __future__ import annotations
"""server/fleet/application/services/aggregate_writer.py
~~~~~~~~~~~~~~~~~~~~~~~~
Boucle « charger → appliquer → compare-and-set → commit » partagée par les services.

- `apply(machine)` est une transition de domaine (retourne un Result) ; elle
  peut flusher des lignes annexes (catalogue) qui partent dans le même commit.
  Elle est REJOUÉE sur un état frais si un autre écrivain a gagné la course.
- `after(machine, value)` écrit les effets de bord transactionnels (outbox) :
  ils partent dans le même commit que la ligne machine.
- Après CONCURRENCY_MAX_RETRIES relectures perdues : ConcurrencyConflictError.
"""
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleet.core.config import settings
from fleet.domain.errors import ConcurrencyConflictError, PersistenceError, Result, not_found
from fleet.domain.machine import Machine
from fleet.infrastructure.persistence.repositories.history_store import HistoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregateWriter:
    def __init__(self, session: Session, *, max_retries: Optional[int] = None) -> None:
        self.s = session
        self.store = HistoryStore(session)
        self.max_retries = settings.CONCURRENCY_MAX_RETRIES if max_retries is None else max_retries

    def mutate(
        self,
        machine_id: str,
        apply: Callable[[Machine], Result[T]],
        *,
        operation: str,
        after: Optional[Callable[[Machine, T], None]] = None,
    ) -> Result[T]:
        attempts = 0
        while True:
            attempts += 1
            machine = self.store.load(machine_id)
            if machine is None:
                self.s.rollback()
                return not_found(f"Machine {machine_id} not found", "machine_id")

            try:
                res = apply(machine)
            except PersistenceError:
                self.s.rollback()
                raise
            if not res.ok:
                self.s.rollback()
                return res
            if not machine.dirty_fields:
                self.s.rollback()
                return res

            try:
                won = self.store.commit(machine)
                if won:
                    if after is not None:
                        after(machine, res.value)
                    self.s.commit()
            except SQLAlchemyError as exc:
                self.s.rollback()
                raise PersistenceError(f"Storage failure during {operation}") from exc
            except PersistenceError:
                self.s.rollback()
                raise

            if won:
                logger.debug(
                    "%s committed", operation,
                    extra={"machine_id": machine_id, "version": machine.version, "attempts": attempts},
                )
                return res

            self.s.rollback()
            if attempts > self.max_retries:
                logger.error(
                    "%s gave up after %d conflicting writes", operation, attempts,
                    extra={"machine_id": machine_id},
                )
                raise ConcurrencyConflictError(
                    f"Concurrent modification of machine {machine_id} ({operation})", field="version"
                )
            logger.warning(
                "%s lost compare-and-set, retrying", operation,
                extra={"machine_id": machine_id, "attempt": attempts},
            )
