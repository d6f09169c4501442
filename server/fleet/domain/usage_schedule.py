from __future__ import annotations
"""server/fleet/domain/usage_schedule.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Programme d'utilisation d'une machine : heures par jour + jours d'opération.

Sert de source au job quotidien qui alimente le compteur d'heures
(`record_operating_hours`) pour les machines qui n'ont pas de relevé réel.
"""

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from fleet.domain.errors import Result, invalid


class DayOfWeek(str, enum.Enum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @classmethod
    def of(cls, d: date | datetime) -> "DayOfWeek":
        # date.weekday() : 0 = lundi
        return list(cls)[d.weekday()]


@dataclass(frozen=True)
class UsageSchedule:
    daily_hours: float
    operating_days: tuple[DayOfWeek, ...]

    @classmethod
    def create(cls, daily_hours: float, operating_days: Iterable[DayOfWeek | str]) -> Result["UsageSchedule"]:
        if daily_hours is None or not (1 <= daily_hours <= 24):
            return invalid("Daily hours must be between 1 and 24", "daily_hours")

        raw = list(operating_days or [])
        if not raw:
            return invalid("Must have at least one operating day", "operating_days")
        if len(raw) > 7:
            return invalid("Cannot have more than 7 operating days", "operating_days")

        days: list[DayOfWeek] = []
        bad: list[str] = []
        for d in raw:
            try:
                days.append(DayOfWeek(d))
            except ValueError:
                bad.append(str(d))
        if bad:
            return invalid(f"Invalid day(s): {', '.join(bad)}", "operating_days")
        if len(set(days)) != len(days):
            return invalid("Duplicate operating days are not allowed", "operating_days")

        return Result.success(cls(daily_hours=float(daily_hours), operating_days=tuple(days)))

    @property
    def weekly_hours(self) -> float:
        return self.daily_hours * len(self.operating_days)

    def is_operating_day(self, day: DayOfWeek | date | datetime) -> bool:
        if not isinstance(day, DayOfWeek):
            day = DayOfWeek.of(day)
        return day in self.operating_days

    def weeks_to_reach_hours(self, target_hours: float, current_hours: float = 0.0) -> int:
        if target_hours <= current_hours:
            return 0
        return math.ceil((target_hours - current_hours) / self.weekly_hours)

    def estimate_date_for_hours(self, target_hours: float, current_hours: float, *, today: date) -> date:
        return today + timedelta(weeks=self.weeks_to_reach_hours(target_hours, current_hours))
