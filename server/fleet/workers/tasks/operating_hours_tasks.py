# server/fleet/workers/tasks/operating_hours_tasks.py
from __future__ import annotations

from datetime import date
from typing import Optional

from celery.utils.log import get_task_logger

from fleet.core.utils.datetime import utcnow
from fleet.domain.machine import SYSTEM_ACTOR
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.database.session import open_session
from fleet.infrastructure.persistence.repositories.machine_repository import MachineRepository
from fleet.application.services.maintenance_service import MaintenanceService
from fleet.workers.celery_app import celery

logger = get_task_logger(__name__)


def accrue_operating_hours(day: Optional[date] = None) -> dict:
    """
    Ajoute `daily_hours` au compteur de chaque machine ACTIVE dont le programme
    d'utilisation inclut le jour `day` (aujourd'hui UTC par défaut).

    Chaque machine est traitée isolément : une erreur est journalisée et
    n'empêche pas les suivantes. Le moteur d'alarmes tourne via le service
    (même chemin que les relevés manuels).
    """
    now = utcnow()
    day = day or now.date()
    stats = {"day": day.isoformat(), "checked": 0, "updated": 0, "skipped": 0, "failed": 0, "alarms_fired": 0}

    with open_session() as s:
        candidates = list(MachineRepository(s).iter_scheduled())

    for machine_id, raw_schedule in candidates:
        stats["checked"] += 1
        try:
            schedule = mappers.schedule_from_dict(raw_schedule)
            if schedule is None or not schedule.is_operating_day(day):
                stats["skipped"] += 1
                continue
            with open_session() as s:
                res = MaintenanceService(s).add_operating_hours(
                    machine_id, schedule.daily_hours, SYSTEM_ACTOR, now=now
                )
            if not res.ok:
                stats["failed"] += 1
                logger.warning("accrue_operating_hours: machine=%s rejected: %s", machine_id, res.error.message)
                continue
            stats["updated"] += 1
            stats["alarms_fired"] += res.value.fired_count
        except Exception:
            stats["failed"] += 1
            logger.exception("accrue_operating_hours: machine=%s failed", machine_id)

    logger.info(
        "accrue_operating_hours: day=%s checked=%d updated=%d skipped=%d failed=%d fired=%d",
        stats["day"], stats["checked"], stats["updated"], stats["skipped"], stats["failed"], stats["alarms_fired"],
    )
    return stats


@celery.task(name="maintenance.accrue_operating_hours")
def accrue_operating_hours_task(day: Optional[str] = None) -> dict:
    return accrue_operating_hours(date.fromisoformat(day) if day else None)
