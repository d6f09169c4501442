# server/tests/unit/domain/test_usage_schedule.py
from datetime import date

import pytest

from fleet.domain.usage_schedule import DayOfWeek, UsageSchedule

pytestmark = pytest.mark.unit


def test_create_valid_schedule():
    s = UsageSchedule.create(8, ["MON", "TUE", DayOfWeek.FRI]).unwrap()
    assert s.daily_hours == 8.0
    assert s.operating_days == (DayOfWeek.MON, DayOfWeek.TUE, DayOfWeek.FRI)
    assert s.weekly_hours == 24


@pytest.mark.parametrize(
    "hours,days,field",
    [
        (0, ["MON"], "daily_hours"),
        (25, ["MON"], "daily_hours"),
        (None, ["MON"], "daily_hours"),
        (8, [], "operating_days"),
        (8, ["MON", "MON"], "operating_days"),
        (8, ["MON", "FUNDAY"], "operating_days"),
        (8, ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN", "MON"], "operating_days"),
    ],
)
def test_invalid_schedules(hours, days, field):
    res = UsageSchedule.create(hours, days)
    assert not res.ok
    assert res.error.field == field


def test_operating_day_from_date():
    s = UsageSchedule.create(10, ["MON", "WED"]).unwrap()
    assert s.is_operating_day(date(2024, 5, 6))       # lundi
    assert not s.is_operating_day(date(2024, 5, 7))   # mardi
    assert s.is_operating_day(DayOfWeek.WED)


def test_estimates():
    s = UsageSchedule.create(8, ["MON", "TUE", "WED", "THU", "FRI"]).unwrap()  # 40 h / semaine
    assert s.weeks_to_reach_hours(500, 420) == 2
    assert s.weeks_to_reach_hours(100, 150) == 0
    assert s.estimate_date_for_hours(500, 420, today=date(2024, 5, 1)) == date(2024, 5, 15)
