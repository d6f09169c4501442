from __future__ import annotations
"""server/fleet/infrastructure/persistence/errors.py
~~~~~~~~~~~~~~~~~~~~~~~~
Frontière repositories : toute erreur SQLAlchemy devient une PersistenceError.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError

from fleet.domain.errors import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("storage failure during %s: %s", operation, exc)
        raise PersistenceError(f"Storage failure during {operation}") from exc
