from __future__ import annotations
"""fleet/workers/celery_app.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Celery app + routage + auto-import des modules de tâches + beat schedule.
"""
import logging

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from fleet.core.config import settings
from fleet.core.logging import setup_logging
from fleet.workers.scheduler.beat_schedule import beat_schedule

celery = Celery("fleet", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

# Routage par files
celery.conf.task_routes = {
    "outbox.deliver": {"queue": "notify"},
    "maintenance.accrue_operating_hours": {"queue": "maintenance"},
}

celery.conf.task_default_retry_delay = 30  # secondes
celery.conf.task_always_eager = settings.CELERY_TASK_ALWAYS_EAGER
celery.conf.timezone = "UTC"
celery.conf.beat_schedule = beat_schedule

celery.conf.update(
    imports=[
        "fleet.workers.tasks.outbox_tasks",
        "fleet.workers.tasks.operating_hours_tasks",
    ],
)


@celery_setup_logging.connect
def _configure_worker_logging(loglevel=None, **kwargs):
    # remplace la configuration de logs de Celery par la nôtre
    setup_logging(loglevel or logging.INFO)
