# server/tests/unit/domain/test_machine_aggregate.py
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from fleet.domain.errors import DomainRuleError, NotFoundError, ValidationError
from fleet.domain.machine import AlarmChanges, Machine, prepend_capped
from fleet.domain.records import (
    ItemResult,
    MachineEvent,
    MachineStatus,
    QuickCheckItem,
    QuickCheckRecord,
    QuickCheckResult,
)

pytestmark = pytest.mark.unit

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
TYPE_ID = "maintenance-type"


def _machine(**kw) -> Machine:
    params = dict(serial_number="SN-1", brand="CAT", model_name="320D", owner_id="owner", now=NOW)
    params.update(kw)
    return Machine.register(**params).unwrap()


def _qc(result="approved", items=None, **kw) -> QuickCheckRecord:
    items = items if items is not None else [QuickCheckItem("Tyres", "approved")]
    params = dict(
        result=result,
        items=tuple(items),
        executed_by_id="u1",
        responsible_name="Ana",
        responsible_worker_id="W-12",
        created_at=NOW,
    )
    params.update(kw)
    return QuickCheckRecord(**params)


def _event(i=0, **kw) -> MachineEvent:
    params = dict(type_id="t1", title=f"event {i}", created_by="u1", created_at=NOW + timedelta(minutes=i))
    params.update(kw)
    return MachineEvent(**params)


# ---------------------------------------------------------------------------
# Enregistrement / statut
# ---------------------------------------------------------------------------
def test_register_rejects_missing_fields():
    res = Machine.register(serial_number=" ", brand="CAT", model_name="x", owner_id="o", now=NOW)
    assert isinstance(res.error, ValidationError)
    assert res.error.field == "serial_number"


def test_status_transitions():
    m = _machine()
    assert m.change_status("MAINTENANCE", now=NOW).ok
    assert m.change_status(MachineStatus.RETIRED, now=NOW).ok
    res = m.change_status("ACTIVE", now=NOW)
    assert isinstance(res.error, DomainRuleError)
    assert m.status is MachineStatus.RETIRED


def test_same_status_is_rejected():
    res = _machine().change_status("ACTIVE", now=NOW)
    assert isinstance(res.error, DomainRuleError)


def test_provider_assignment_and_recipients():
    m = _machine()
    assert m.notification_recipients() == ["owner"]
    assert m.assign_provider("prov", now=NOW).ok
    assert m.notification_recipients() == ["owner", "prov"]
    assert not m.assign_provider("prov", now=NOW).ok
    assert m.remove_provider(now=NOW).ok
    assert not m.remove_provider(now=NOW).ok


def test_provider_equal_to_owner_is_notified_once():
    m = _machine()
    m.assign_provider("owner", now=NOW)
    assert m.notification_recipients() == ["owner"]


# ---------------------------------------------------------------------------
# QuickChecks
# ---------------------------------------------------------------------------
def test_quick_check_is_prepended_and_normalized():
    m = _machine()
    first = m.add_quick_check_record(_qc()).unwrap()
    second = m.add_quick_check_record(
        _qc("disapproved", [QuickCheckItem("Brakes", "disapproved"), QuickCheckItem("Lights", "approved")])
    ).unwrap()
    assert [q.id for q in m.quick_checks] == [second.id, first.id]
    assert second.result is QuickCheckResult.DISAPPROVED
    assert second.items[0].result is ItemResult.DISAPPROVED
    assert "quick_checks" in m.dirty_fields


@pytest.mark.parametrize(
    "record,field",
    [
        (_qc(items=[]), "items"),
        (_qc(items=[QuickCheckItem("Tyres", "broken")]), "items[0].result"),
        (_qc(result="maybe"), "result"),
        (_qc(responsible_name=""), "responsible_name"),
        (_qc(responsible_worker_id="  "), "responsible_worker_id"),
        (_qc(responsible_name="x" * 101), "responsible_name"),
        (_qc(responsible_worker_id="x" * 51), "responsible_worker_id"),
        (_qc(result="disapproved"), "result"),  # tous approved -> approved attendu
        (_qc(items=[QuickCheckItem("Tyres", "disapproved")]), "result"),
        (_qc(result="notInitiated", items=[QuickCheckItem("a", "omitted"), QuickCheckItem("b", "disapproved")]), "result"),
    ],
)
def test_invalid_quick_checks_change_nothing(record, field):
    m = _machine()
    res = m.add_quick_check_record(record)
    assert isinstance(res.error, ValidationError)
    assert res.error.field == field
    assert m.quick_checks == []
    assert not m.dirty_fields


def test_not_initiated_when_everything_omitted():
    m = _machine()
    rec = _qc("notInitiated", [QuickCheckItem("a", "omitted"), QuickCheckItem("b", "omitted")])
    assert m.add_quick_check_record(rec).ok


def test_no_quick_check_on_retired_machine():
    m = _machine(status="RETIRED")
    res = m.add_quick_check_record(_qc())
    assert isinstance(res.error, DomainRuleError)


def test_quick_check_does_not_touch_alarms():
    m = _machine()
    m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW)
    before = list(m.maintenance_alarms)
    m.add_quick_check_record(_qc())
    assert m.maintenance_alarms == before


# ---------------------------------------------------------------------------
# Évènements + soft cap
# ---------------------------------------------------------------------------
def test_prepend_capped_evicts_oldest_before_insert():
    assert prepend_capped([3, 2, 1], 4, 3) == [4, 3, 2]
    assert prepend_capped([2, 1], 3, 3) == [3, 2, 1]
    assert prepend_capped([1], 2, None) == [2, 1]


def test_event_cap_evicts_single_oldest():
    cap = 5
    m = _machine()
    events = [m.add_event(_event(i), cap=cap).unwrap() for i in range(cap)]
    assert len(m.events_history) == cap

    newest = m.add_event(_event(99), cap=cap).unwrap()
    assert len(m.events_history) == cap
    assert m.events_history[0].id == newest.id
    assert events[0].id not in [e.id for e in m.events_history]
    assert [e.id for e in m.events_history[1:]] == [e.id for e in reversed(events[1:])]


@pytest.mark.parametrize(
    "event,field",
    [
        (_event(title=""), "title"),
        (_event(title="x" * 201), "title"),
        (_event(description="x" * 2001), "description"),
        (_event(type_id=""), "type_id"),
    ],
)
def test_invalid_events(event, field):
    m = _machine()
    res = m.add_event(event)
    assert res.error.field == field
    assert m.events_history == []


# ---------------------------------------------------------------------------
# Compteur + alarmes
# ---------------------------------------------------------------------------
def test_regressive_meter_is_rejected_and_state_unchanged():
    m = _machine(operating_hours=1000)
    m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW)
    m.dirty_fields.clear()
    snapshot = (m.operating_hours, list(m.maintenance_alarms), list(m.events_history))

    res = m.record_operating_hours(900, now=NOW, maintenance_type_id=TYPE_ID)

    assert isinstance(res.error, ValidationError)
    assert res.error.field == "operating_hours"
    assert (m.operating_hours, m.maintenance_alarms, m.events_history) == snapshot
    assert not m.dirty_fields


@pytest.mark.parametrize("value", [float("nan"), float("inf"), -1, "12"])
def test_non_numeric_meter_is_rejected(value):
    res = _machine().record_operating_hours(value, now=NOW, maintenance_type_id=TYPE_ID)
    assert isinstance(res.error, ValidationError)


def test_same_total_is_a_noop():
    m = _machine(operating_hours=10)
    tr = m.record_operating_hours(10, now=NOW, maintenance_type_id=TYPE_ID).unwrap()
    assert tr.delta == 0 and tr.fired_count == 0
    assert not m.dirty_fields


def test_meter_alarms_and_system_events_change_together():
    m = _machine(operating_hours=1000)
    oil = m.create_alarm(title="Oil", interval_hours=500, created_by="u1", now=NOW, accumulated_hours=480).unwrap()
    later = NOW + timedelta(hours=1)

    tr = m.record_operating_hours(1030, now=later, maintenance_type_id=TYPE_ID).unwrap()

    assert tr.previous_total == 1000 and tr.new_total == 1030 and tr.delta == 30
    assert tr.fired_count == 1
    assert m.operating_hours == 1030
    alarm = m.find_alarm(oil.id)
    assert alarm.accumulated_hours == pytest.approx(10)
    assert alarm.times_triggered == 1
    assert alarm.last_triggered_at == later

    ev = m.events_history[0]
    assert ev.is_system_generated
    assert ev.type_id == TYPE_ID
    assert ev.created_by == "system"
    assert ev.metadata["alarm_id"] == oil.id
    assert ev.metadata["crossed_at_hours"] == 1020
    assert {"operating_hours", "maintenance_alarms", "events_history"} <= m.dirty_fields


def test_system_events_newest_crossing_on_top():
    m = _machine()
    m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW)
    m.create_alarm(title="Filter", interval_hours=150, created_by="u1", now=NOW)

    tr = m.record_operating_hours(300, now=NOW, maintenance_type_id=TYPE_ID).unwrap()

    # franchissements : Oil@100, Filter@150, Oil@200, Oil@300 / Filter@300
    assert [t.crossed_at_hours for t in tr.triggers] == [100, 150, 200, 300, 300]
    assert [e.metadata["crossed_at_hours"] for e in m.events_history] == [300, 300, 200, 150, 100]


# ---------------------------------------------------------------------------
# CRUD alarmes
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "kwargs,field",
    [
        (dict(title="Oil", interval_hours=0), "interval_hours"),
        (dict(title="Oil", interval_hours=-5), "interval_hours"),
        (dict(title="", interval_hours=10), "title"),
        (dict(title="Oil", interval_hours=10, related_parts=["x"] * 21), "related_parts"),
        (dict(title="Oil", interval_hours=10, accumulated_hours=10), "accumulated_hours"),
    ],
)
def test_create_alarm_validation(kwargs, field):
    m = _machine()
    res = m.create_alarm(created_by="u1", now=NOW, **kwargs)
    assert res.error.field == field
    assert m.maintenance_alarms == []


def test_update_deactivate_reactivate_keeps_accumulator():
    m = _machine()
    alarm = m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW).unwrap()
    m.record_operating_hours(40, now=NOW, maintenance_type_id=TYPE_ID)

    m.deactivate_alarm(alarm.id, now=NOW).unwrap()
    m.record_operating_hours(500, now=NOW, maintenance_type_id=TYPE_ID)
    assert m.find_alarm(alarm.id).accumulated_hours == pytest.approx(40)
    assert m.find_alarm(alarm.id).times_triggered == 0

    updated = m.update_alarm(alarm.id, AlarmChanges(is_active=True, title="Oil & filter"), now=NOW).unwrap()
    assert updated.is_active and updated.title == "Oil & filter"
    assert updated.accumulated_hours == pytest.approx(40)

    m.record_operating_hours(560, now=NOW, maintenance_type_id=TYPE_ID)
    assert m.find_alarm(alarm.id).times_triggered == 1
    assert m.find_alarm(alarm.id).accumulated_hours == pytest.approx(0)


def test_unknown_alarm_is_not_found():
    m = _machine()
    assert isinstance(m.update_alarm("nope", AlarmChanges(title="x"), now=NOW).error, NotFoundError)
    assert isinstance(m.reset_alarm("nope", now=NOW).error, NotFoundError)


def test_reset_alarm_zeroes_accumulator_only():
    m = _machine()
    alarm = m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW, accumulated_hours=70).unwrap()
    m.maintenance_alarms = [replace(alarm, times_triggered=4)]
    reset = m.reset_alarm(alarm.id, now=NOW).unwrap()
    assert reset.accumulated_hours == 0
    assert reset.times_triggered == 4


def test_interval_cannot_drop_to_accumulated_hours():
    m = _machine()
    alarm = m.create_alarm(title="Oil", interval_hours=500, created_by="u1", now=NOW, accumulated_hours=480).unwrap()

    for interval in (100, 480):
        res = m.update_alarm(alarm.id, AlarmChanges(interval_hours=interval), now=NOW)
        assert isinstance(res.error, ValidationError)
        assert res.error.field == "interval_hours"
    assert m.find_alarm(alarm.id).interval_hours == 500

    tr = m.record_operating_hours(1, now=NOW, maintenance_type_id=TYPE_ID).unwrap()
    assert tr.fired_count == 0

    m.reset_alarm(alarm.id, now=NOW).unwrap()
    assert m.update_alarm(alarm.id, AlarmChanges(interval_hours=100), now=NOW).unwrap().interval_hours == 100


def test_type_id_only_needed_when_an_alarm_fires():
    m = _machine()
    m.create_alarm(title="Oil", interval_hours=100, created_by="u1", now=NOW)

    assert not m.alarms_due(99)
    assert m.record_operating_hours(99, now=NOW).unwrap().fired_count == 0

    assert m.alarms_due(1)
    res = m.record_operating_hours(100, now=NOW)
    assert isinstance(res.error, ValidationError)
    assert res.error.field == "maintenance_type_id"
    assert m.operating_hours == 99
