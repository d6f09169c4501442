# server/tests/unit/conftest.py
# ─────────────────────────────────────────────────────────────────────────────
# Fixtures des TESTS UNITAIRES :
# - `now`            : horloge fixe (UTC)
# - `make_machine`   : enregistre une machine via MachineService (commit)
# - `fake_sink`      : puits de notifications qui capture les envois
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import itertools
from datetime import datetime, timezone

import pytest

OWNER = "user-owner"
PROVIDER = "user-provider"

_serials = itertools.count(1)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_machine(Session, now):
    """Crée une machine persistée ; retourne le domaine `Machine`."""
    from fleet.application.services.machine_service import MachineService

    def _make(**overrides):
        params = dict(
            serial_number=f"SN-{next(_serials):05d}",
            brand="Caterpillar",
            model_name="320D",
            owner_id=OWNER,
            operating_hours=0.0,
            now=now,
        )
        params.update(overrides)
        with Session() as s:
            res = MachineService(s).register_machine(OWNER, **params)
        assert res.ok, res.error
        return res.value

    return _make


class FakeSink:
    name = "fake"

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.calls: list[tuple[str, dict]] = []

    def notify(self, user_id, payload):
        self.calls.append((user_id, dict(payload)))
        return self.ok


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def failing_sink() -> FakeSink:
    return FakeSink(ok=False)
