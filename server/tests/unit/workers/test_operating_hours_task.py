# server/tests/unit/workers/test_operating_hours_task.py
from datetime import date

import pytest

from fleet.application.services.machine_service import MachineService
from fleet.application.services.maintenance_service import MaintenanceService
from fleet.infrastructure.persistence.repositories.history_store import HistoryStore
from fleet.workers.tasks.operating_hours_tasks import accrue_operating_hours, accrue_operating_hours_task

pytestmark = pytest.mark.unit

MONDAY = date(2024, 5, 6)


@pytest.fixture
def fleet_machines(Session, make_machine, now):
    weekdays = make_machine(operating_hours=100, daily_hours=8, operating_days=["MON", "TUE", "WED", "THU", "FRI"])
    weekend = make_machine(daily_hours=6, operating_days=["SAT", "SUN"])
    make_machine()  # sans programme
    retired = make_machine(daily_hours=10, operating_days=["MON"])
    with Session() as s:
        MachineService(s).change_status(retired.id, "RETIRED", "user-owner", now=now).unwrap()
        MaintenanceService(s).create_alarm(
            weekdays.id, "user-owner", title="Grease", interval_hours=10, now=now
        ).unwrap()
    return weekdays, weekend, retired


def _meter(Session, machine_id):
    with Session() as s:
        return HistoryStore(s).load(machine_id).operating_hours


def test_accrues_only_on_operating_days(Session, fleet_machines):
    weekdays, weekend, retired = fleet_machines

    stats = accrue_operating_hours(MONDAY)

    assert stats == {
        "day": "2024-05-06",
        "checked": 2,
        "updated": 1,
        "skipped": 1,
        "failed": 0,
        "alarms_fired": 0,
    }
    assert _meter(Session, weekdays.id) == 108
    assert _meter(Session, weekend.id) == 0
    assert _meter(Session, retired.id) == 0


def test_accrual_runs_the_alarm_engine(Session, fleet_machines):
    weekdays, _, _ = fleet_machines

    accrue_operating_hours(MONDAY)
    stats = accrue_operating_hours(MONDAY)

    assert stats["alarms_fired"] == 1
    with Session() as s:
        stored = HistoryStore(s).load(weekdays.id)
    assert stored.operating_hours == 116
    assert stored.maintenance_alarms[0].accumulated_hours == pytest.approx(6)
    assert stored.events_history[0].is_system_generated


def test_task_accepts_iso_day(Session, fleet_machines):
    _, weekend, _ = fleet_machines
    stats = accrue_operating_hours_task.delay("2024-05-11").get()  # samedi
    assert stats["updated"] == 1
    assert _meter(Session, weekend.id) == 6
