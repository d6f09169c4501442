# server/fleet/infrastructure/persistence/database/session.py
from __future__ import annotations

"""
Moteur + fabrique de sessions (singletons de processus).

- PostgreSQL (psycopg) : connect_timeout
- SQLite : clés étrangères activées à chaque connexion ; base in-memory partagée
  entre sessions via StaticPool (tests, worker eager)

Services et tâches ouvrent leurs sessions ici ; les repositories ne font que flush.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fleet.core.config import settings

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    # outbox_events.machine_id : ON DELETE SET NULL n'agit qu'avec ce pragma
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine

    url = make_url(settings.DATABASE_URL)
    backend = url.get_backend_name()
    options: dict = {"pool_pre_ping": True}
    connect_args: dict = {}

    if backend in ("postgresql", "postgres"):
        connect_args["connect_timeout"] = int(settings.DB_CONNECT_TIMEOUT)
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        if (url.database or "").strip() in ("", ":memory:"):
            options["poolclass"] = StaticPool

    engine = create_engine(url, connect_args=connect_args, **options)
    if backend == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    _engine = engine
    return _engine


def init_sessionmaker() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        # expire_on_commit=False : les tâches lisent encore les objets après commit
        _SessionLocal = sessionmaker(bind=init_engine(), autoflush=True, expire_on_commit=False)
    return _SessionLocal


def get_session() -> Session:
    """Nouvelle Session ; fermeture à la charge de l'appelant."""
    return init_sessionmaker()()


@contextmanager
def open_session() -> Iterator[Session]:
    """
    `with open_session() as s:` : rollback si une exception remonte, fermeture
    dans tous les cas. Le commit reste explicite (services / tâches).
    """
    s = get_session()
    try:
        yield s
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
