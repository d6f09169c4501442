from __future__ import annotations
"""server/fleet/workers/scheduler/beat_schedule.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Planification périodique des tâches Celery (Beat).
"""
from celery.schedules import crontab

from fleet.core.config import settings

beat_schedule = {
    "deliver-outbox-every-30s": {
        "task": "outbox.deliver",
        "schedule": 30.0,
    },
    "accrue-operating-hours-daily": {
        "task": "maintenance.accrue_operating_hours",
        "schedule": crontab(hour=settings.OPERATING_HOURS_CRON_HOUR, minute=0),
    },
}
