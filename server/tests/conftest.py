# server/tests/conftest.py
"""
Conftest *global* pour la suite de tests.

Points clés :
- Pose les ENV *avant* les imports fleet.* : DATABASE_URL SQLite in-memory,
  pas de webhook (puits de notifications = log), Celery eager.
- Le moteur SQLite in-memory est celui de `fleet...session.init_engine()`
  (StaticPool) : services, tâches et tests partagent donc la même base.
- Tables créées une fois (Base.metadata.create_all), purgées après chaque test unitaire.
"""

import os

import pytest


def _is_unit(request: pytest.FixtureRequest) -> bool:
    """True si le test courant est marqué @pytest.mark.unit."""
    return request.node.get_closest_marker("unit") is not None


def pytest_configure(config) -> None:
    """S'exécute avant la collecte → les ENV sont vues par Settings()."""
    os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")
    os.environ.pop("NOTIFY_WEBHOOK_URL", None)


# ============================================================================
# DB SQLite in-memory partagée + Base.metadata.create_all
# ============================================================================
@pytest.fixture(scope="session")
def _engine():
    from fleet.infrastructure.persistence.database.base import Base
    from fleet.infrastructure.persistence.database.session import init_engine

    engine = init_engine()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="session")
def _Session_unit(_engine):
    from fleet.infrastructure.persistence.database.session import init_sessionmaker

    return init_sessionmaker()


@pytest.fixture
def Session(request, _Session_unit):
    """
    sessionmaker à utiliser comme `with Session() as s:` dans les tests unitaires.
    """
    if not _is_unit(request):
        pytest.skip("Session fixture is only available for unit tests")
    return _Session_unit


@pytest.fixture(autouse=True)
def _clear_db_between_unit_tests(request):
    """Après chaque test unitaire, on vide toutes les tables. ⚠️ Générateur : yield toujours."""
    if not _is_unit(request):
        yield
        return
    _Session_unit = request.getfixturevalue("_Session_unit")
    yield
    from fleet.infrastructure.persistence.database.base import Base

    with _Session_unit() as s:
        for table in reversed(Base.metadata.sorted_tables):
            s.execute(table.delete())
        s.commit()


# ============================================================================
# Celery en mode "eager"
# ============================================================================
@pytest.fixture(autouse=True)
def celery_eager(request):
    if not _is_unit(request):
        yield
        return

    from fleet.workers.celery_app import celery

    prev_always = celery.conf.task_always_eager
    prev_propag = celery.conf.task_eager_propagates
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = True
    try:
        yield
    finally:
        celery.conf.task_always_eager = prev_always
        celery.conf.task_eager_propagates = prev_propag
