from __future__ import annotations

"""server/fleet/infrastructure/persistence/repositories/event_type_repository.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Catalogue des types d'évènements (table machine_event_types).
Flush uniquement ; commit à la charge de l'appelant.
"""

import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fleet.domain.errors import PersistenceError
from fleet.infrastructure.persistence.database.models.event_type import EventType
from fleet.infrastructure.persistence.errors import storage_errors


class EventTypeRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, type_id: str) -> Optional[EventType]:
        with storage_errors("event type get"):
            return self.db.get(EventType, type_id)

    def by_normalized_name(self, normalized_name: str) -> Optional[EventType]:
        stmt = select(EventType).where(EventType.normalized_name == normalized_name)
        with storage_errors("event type lookup"):
            return self.db.scalar(stmt)

    def insert(
        self,
        *,
        name: str,
        normalized_name: str,
        language: str,
        system_generated: bool,
        created_by: Optional[str],
    ) -> Optional[EventType]:
        """
        Insère dans un SAVEPOINT. Retourne None si un autre écrivain a créé le
        même `normalized_name` entre-temps (l'appelant relit).
        """
        row = EventType(
            id=uuid.uuid4().hex,
            name=name,
            normalized_name=normalized_name,
            languages=[language],
            system_generated=system_generated,
            created_by=created_by,
            times_used=0,
            is_active=True,
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            return None
        except SQLAlchemyError as exc:
            raise PersistenceError("Storage failure during event type insert") from exc
        return row

    def add_language(self, row: EventType, language: str) -> EventType:
        if language not in (row.languages or []):
            row.languages = [*(row.languages or []), language]
            with storage_errors("event type update"):
                self.db.flush()
        return row

    def increment_usage(self, type_id: str, by: int = 1) -> int:
        stmt = (
            update(EventType)
            .where(EventType.id == type_id)
            .values(times_used=EventType.times_used + by)
            .execution_options(synchronize_session=False)
        )
        with storage_errors("event type usage"):
            return self.db.execute(stmt).rowcount

    def search(self, query: Optional[str] = None, *, limit: int = 20) -> list[EventType]:
        stmt = select(EventType).where(EventType.is_active.is_(True))
        if query:
            stmt = stmt.where(EventType.name.icontains(query.strip(), autoescape=True))
        stmt = stmt.order_by(EventType.times_used.desc(), EventType.name).limit(limit)
        with storage_errors("event type search"):
            return list(self.db.scalars(stmt))
