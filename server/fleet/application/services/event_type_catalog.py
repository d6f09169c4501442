from __future__ import annotations
"""server/fleet/application/services/event_type_catalog.py
~~~~~~~~~~~~~~~~~~~~~~~~
Catalogue des types d'évènements.

resolve_or_create_type(name, language) -> type_id
  - recherche par nom normalisé ("Cambio de aceite" -> "cambio_de_aceite")
  - existe : ajoute la langue si absente
  - n'existe pas : crée (SAVEPOINT ; si un autre écrivain a gagné, on relit)
"""
import logging
import re
import unicodedata
from typing import Optional

from sqlalchemy.orm import Session

from fleet.domain.errors import Result, invalid, not_found
from fleet.infrastructure.persistence.database.models.event_type import EventType
from fleet.infrastructure.persistence.repositories.event_type_repository import EventTypeRepository

logger = logging.getLogger(__name__)

MIN_NAME_LEN = 2
MAX_NAME_LEN = 100

_STRIP = re.compile(r"[^a-z0-9_\s]")
_SPACES = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    return _SPACES.sub("_", _STRIP.sub("", folded.lower().strip()))


class EventTypeCatalog:
    def __init__(self, session: Session) -> None:
        self.s = session
        self.repo = EventTypeRepository(session)

    def resolve_or_create_type(
        self,
        name: str,
        language: str,
        *,
        system_generated: bool = False,
        created_by: Optional[str] = None,
    ) -> Result[str]:
        """Flush seulement : l'appelant commit."""
        clean = (name or "").strip()
        if not (MIN_NAME_LEN <= len(clean) <= MAX_NAME_LEN):
            return invalid(
                f"Event type name must be between {MIN_NAME_LEN} and {MAX_NAME_LEN} characters", "name"
            )
        lang = (language or "").strip().lower()
        if len(lang) != 2 or not lang.isalpha():
            return invalid("Language must be ISO 639-1 code (2 letters)", "language")
        normalized = normalize_name(clean)
        if not normalized:
            return invalid("Event type name must contain letters or digits", "name")

        row = self.repo.by_normalized_name(normalized)
        if row is None:
            row = self.repo.insert(
                name=clean,
                normalized_name=normalized,
                language=lang,
                system_generated=system_generated,
                created_by=created_by,
            )
            if row is None:
                # créé en parallèle
                row = self.repo.by_normalized_name(normalized)
            else:
                logger.info("event type created", extra={"type_id": row.id, "normalized_name": normalized})
        if row is None:
            return not_found(f"Event type {normalized!r} vanished after concurrent insert", "name")
        self.repo.add_language(row, lang)
        return Result.success(row.id)

    def get(self, type_id: str) -> Optional[EventType]:
        return self.repo.get(type_id)

    def require_active(self, type_id: str) -> Result[EventType]:
        row = self.repo.get(type_id) if type_id else None
        if row is None or not row.is_active:
            return not_found(f"Event type {type_id} not found", "type_id")
        return Result.success(row)

    def increment_usage(self, type_id: str, by: int = 1) -> bool:
        return self.repo.increment_usage(type_id, by) == 1

    def search(self, query: Optional[str] = None, *, limit: int = 20) -> list[EventType]:
        return self.repo.search(query, limit=limit)
