# server/tests/unit/services/test_machine_history_service.py
from datetime import timedelta

import pytest

from fleet.application.services.event_type_catalog import EventTypeCatalog
from fleet.application.services.machine_history_service import MachineHistoryService
from fleet.application.services.machine_service import MachineService
from fleet.core.config import settings
from fleet.domain.errors import DomainRuleError, NotFoundError, ValidationError
from fleet.domain.records import QuickCheckResult
from fleet.infrastructure.messaging.events import EVENT_TYPE_USED
from fleet.infrastructure.persistence.history_pipeline import EventFilter
from fleet.infrastructure.persistence.repositories.outbox_repository import OutboxRepository

pytestmark = pytest.mark.unit

ITEMS = [
    {"name": "Tyres", "result": "approved", "description": "Pressure and wear"},
    {"name": "Brakes", "result": "disapproved"},
]


def _type(Session, name="Inspection"):
    with Session() as s:
        type_id = EventTypeCatalog(s).resolve_or_create_type(name, "en").unwrap()
        s.commit()
    return type_id


def _add_qc(svc, machine_id, when, items=ITEMS, result="disapproved"):
    return svc.add_quick_check(
        machine_id,
        "inspector",
        result=result,
        items=items,
        responsible_name="Ana",
        responsible_worker_id="W-1",
        observations="left tyre low",
        now=when,
    )


# ---------------------------------------------------------------------------
# QuickChecks
# ---------------------------------------------------------------------------
def test_latest_quick_check_round_trip(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        assert svc.latest_quick_check(m.id).unwrap() is None
        _add_qc(svc, m.id, now).unwrap()
        added = _add_qc(svc, m.id, now + timedelta(hours=1)).unwrap()

    with Session() as s:
        latest = MachineHistoryService(s).latest_quick_check(m.id).unwrap()

    assert latest == added
    assert latest.result is QuickCheckResult.DISAPPROVED
    assert latest.executed_by_id == "inspector"
    assert latest.created_at == now + timedelta(hours=1)


def test_items_template_drops_results(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        assert svc.get_quick_check_items_template(m.id).unwrap() == []
        _add_qc(svc, m.id, now).unwrap()
        template = svc.get_quick_check_items_template(m.id).unwrap()

    assert template == [
        {"name": "Tyres", "description": "Pressure and wear"},
        {"name": "Brakes", "description": None},
    ]


def test_count_disapproved(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        _add_qc(svc, m.id, now).unwrap()
        _add_qc(svc, m.id, now, items=[{"name": "Tyres", "result": "approved"}], result="approved").unwrap()
        _add_qc(svc, m.id, now).unwrap()
        assert svc.count_disapproved_quick_checks(m.id).unwrap() == 2
        assert isinstance(svc.count_disapproved_quick_checks("c" * 32).error, NotFoundError)


def test_invalid_quick_check_is_not_written(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        res = _add_qc(svc, m.id, now, result="approved")
        assert isinstance(res.error, ValidationError)
        assert svc.get_quick_check_history(m.id).unwrap().total == 0


def test_quick_check_on_retired_machine(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        MachineService(s).change_status(m.id, "RETIRED", "user-owner", now=now).unwrap()
        res = _add_qc(MachineHistoryService(s), m.id, now)
    assert isinstance(res.error, DomainRuleError)


def test_quick_checks_are_never_evicted_by_default(Session, make_machine, now):
    assert settings.QUICKCHECK_HISTORY_CAP is None
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        added = [_add_qc(svc, m.id, now + timedelta(minutes=i)).unwrap() for i in range(101)]
        page = svc.get_quick_check_history(m.id, page=2, limit=100).unwrap()
    assert page.total == 101
    assert [q.id for q in page.items] == [added[0].id]


def test_opt_in_quick_check_cap(Session, make_machine, now, monkeypatch):
    monkeypatch.setattr(settings, "QUICKCHECK_HISTORY_CAP", 3)
    m = make_machine()
    with Session() as s:
        svc = MachineHistoryService(s)
        added = [_add_qc(svc, m.id, now + timedelta(minutes=i)).unwrap() for i in range(4)]
        page = svc.get_quick_check_history(m.id, limit=10).unwrap()
    assert page.total == 3
    assert [q.id for q in page.items] == [q.id for q in reversed(added[1:])]


# ---------------------------------------------------------------------------
# Évènements
# ---------------------------------------------------------------------------
def test_add_event_and_usage_intent(Session, make_machine, now):
    m = make_machine()
    type_id = _type(Session)
    with Session() as s:
        svc = MachineHistoryService(s)
        ev = svc.add_event(m.id, "mechanic", type_id=type_id, title="  Weekly inspection ", now=now).unwrap()
        latest = svc.latest_event(m.id).unwrap()
        intents = OutboxRepository(s).list_for_machine(m.id, type_=EVENT_TYPE_USED)

    assert ev.title == "Weekly inspection"
    assert latest.id == ev.id and not latest.is_system_generated
    assert len(intents) == 1
    assert intents[0].payload == {"type_id": type_id, "machine_id": m.id, "count": 1}


def test_add_event_unknown_type(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        res = MachineHistoryService(s).add_event(m.id, "mechanic", type_id="missing", title="x", now=now)
    assert isinstance(res.error, NotFoundError)
    assert res.error.field == "type_id"


def test_add_event_validates_before_catalog(Session, make_machine, now):
    m = make_machine()
    with Session() as s:
        res = MachineHistoryService(s).add_event(m.id, "mechanic", type_id="missing", title="", now=now)
    assert isinstance(res.error, ValidationError)
    assert res.error.field == "title"


def test_add_event_unknown_machine(Session, now):
    type_id = _type(Session)
    with Session() as s:
        res = MachineHistoryService(s).add_event("d" * 32, "mechanic", type_id=type_id, title="x", now=now)
        assert OutboxRepository(s).list_for_machine("d" * 32) == []
    assert isinstance(res.error, NotFoundError)


def test_count_events_by_type(Session, make_machine, now):
    m = make_machine()
    a = _type(Session, "Inspection")
    b = _type(Session, "Repair")
    with Session() as s:
        svc = MachineHistoryService(s)
        for i, type_id in enumerate([a, b, a, a]):
            svc.add_event(m.id, "mechanic", type_id=type_id, title=f"e{i}", now=now).unwrap()
        counts = svc.count_events_by_type(m.id).unwrap()
    assert counts == {a: 3, b: 1}


def test_latest_on_unknown_machine(Session):
    with Session() as s:
        svc = MachineHistoryService(s)
        assert isinstance(svc.latest_event("e" * 32).error, NotFoundError)
        assert isinstance(svc.latest_quick_check("e" * 32).error, NotFoundError)


def test_events_history_filtered_page(Session, make_machine, now):
    m = make_machine()
    a = _type(Session, "Inspection")
    b = _type(Session, "Repair")
    with Session() as s:
        svc = MachineHistoryService(s)
        added = [
            svc.add_event(m.id, "mechanic", type_id=t, title=f"e{i}", now=now + timedelta(minutes=i)).unwrap()
            for i, t in enumerate([a, b, a, a, b])
        ]
        page = svc.get_events_history(m.id, EventFilter(type_id=a), page=2, limit=2).unwrap()
        missing = svc.get_events_history("f" * 32)

    assert (page.total, page.page, page.limit, page.total_pages) == (3, 2, 2, 2)
    assert [e.id for e in page.items] == [added[0].id]
    assert not page.has_next
    assert isinstance(missing.error, NotFoundError)
