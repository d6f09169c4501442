from __future__ import annotations
"""server/fleet/application/services/maintenance_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
Alarmes de maintenance + compteur d'heures.

record_operating_hours(machine_id, new_total, actor_id)
  1) boucle compare-and-set : le relevé est validé contre le compteur chargé ;
     si une alarme va se déclencher, le type d'évènement réservé « maintenance
     due » est résolu (ou créé) dans la même transaction
  2) l'agrégat avance compteur + alarmes et ajoute les évènements système, le
     tout dans UN seul UPDATE
  3) dans la même transaction : une intention outbox par (déclenchement, destinataire)
     et une intention d'usage du type d'évènement

La livraison des notifications est asynchrone (worker outbox) : un échec de
notification ne défait jamais un déclenchement.

Non idempotent : rejouer le même delta le compte deux fois.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from fleet.core.config import settings
from fleet.core.utils.datetime import utcnow
from fleet.domain.alarm_engine import TriggerOutcome
from fleet.domain.errors import PersistenceError, Result, invalid, not_found
from fleet.domain.machine import SYSTEM_ACTOR, AlarmChanges, HoursTransition, Machine, is_finite_number
from fleet.domain.records import HistoryCollection, MaintenanceAlarm
from fleet.application.services.aggregate_writer import AggregateWriter
from fleet.application.services.event_type_catalog import EventTypeCatalog
from fleet.infrastructure.messaging.events import EventTypeUsed, NotificationRequested
from fleet.infrastructure.messaging.outbox import Outbox
from fleet.infrastructure.persistence import mappers
from fleet.infrastructure.persistence.repositories.history_store import HistoryStore
from fleet.infrastructure.persistence.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


def render_notification(machine: Machine, trigger: TriggerOutcome) -> tuple[str, str]:
    label = machine.nickname or f"{machine.brand} {machine.model_name}"
    title = f"Maintenance due: {trigger.alarm_title}"
    message = (
        f'{label} ({machine.serial_number}) reached the "{trigger.alarm_title}" interval '
        f"of {trigger.interval_hours:g} operating hours."
    )
    if trigger.related_parts:
        message += f" Related parts: {', '.join(trigger.related_parts)}."
    return title[:200], message[:2000]


class MaintenanceService:
    def __init__(self, session: Session, *, catalog: Optional[EventTypeCatalog] = None) -> None:
        self.s = session
        self.writer = AggregateWriter(session)
        self.store = HistoryStore(session)
        self.catalog = catalog or EventTypeCatalog(session)
        self.outbox = Outbox(OutboxRepository(session))

    # ------------------------------------------------------------------
    # CRUD alarmes
    # ------------------------------------------------------------------
    def create_alarm(
        self,
        machine_id: str,
        actor_id: str,
        *,
        title: str,
        interval_hours: float,
        description: str = "",
        related_parts: Iterable[str] = (),
        now=None,
    ) -> Result[MaintenanceAlarm]:
        now = now or utcnow()
        res = self.writer.mutate(
            machine_id,
            lambda m: m.create_alarm(
                title=title,
                interval_hours=interval_hours,
                description=description,
                related_parts=related_parts,
                created_by=actor_id,
                now=now,
            ),
            operation="create_alarm",
        )
        if res.ok:
            logger.info("maintenance alarm created", extra={"machine_id": machine_id, "alarm_id": res.value.id})
        return res

    def update_alarm(
        self, machine_id: str, alarm_id: str, actor_id: str, changes: AlarmChanges, *, now=None
    ) -> Result[MaintenanceAlarm]:
        now = now or utcnow()
        return self.writer.mutate(
            machine_id, lambda m: m.update_alarm(alarm_id, changes, now=now), operation="update_alarm"
        )

    def deactivate_alarm(self, machine_id: str, alarm_id: str, actor_id: str, *, now=None) -> Result[MaintenanceAlarm]:
        now = now or utcnow()
        res = self.writer.mutate(
            machine_id, lambda m: m.deactivate_alarm(alarm_id, now=now), operation="deactivate_alarm"
        )
        if res.ok:
            logger.info("maintenance alarm deactivated", extra={"machine_id": machine_id, "alarm_id": alarm_id, "actor_id": actor_id})
        return res

    def reset_alarm(self, machine_id: str, alarm_id: str, actor_id: str, *, now=None) -> Result[MaintenanceAlarm]:
        now = now or utcnow()
        return self.writer.mutate(machine_id, lambda m: m.reset_alarm(alarm_id, now=now), operation="reset_alarm")

    def list_alarms(self, machine_id: str, *, only_active: bool = False) -> Result[list[MaintenanceAlarm]]:
        raw = self.store.raw_column(machine_id, HistoryCollection.ALARMS)
        if raw is None:
            return not_found(f"Machine {machine_id} not found", "machine_id")
        alarms = [mappers.alarm_from_dict(d) for d in raw]
        if only_active:
            alarms = [a for a in alarms if a.is_active]
        return Result.success(alarms)

    # ------------------------------------------------------------------
    # Compteur d'heures
    # ------------------------------------------------------------------
    def _maintenance_type_id(self) -> str:
        """Flush seulement : la ligne du catalogue part dans le commit de la machine."""
        res = self.catalog.resolve_or_create_type(
            settings.MAINTENANCE_EVENT_TYPE_NAME,
            settings.MAINTENANCE_EVENT_LANGUAGE,
            system_generated=True,
        )
        if not res.ok:
            # configuration invalide : rien à voir avec l'entrée utilisateur
            raise PersistenceError(f"Cannot resolve maintenance event type: {res.error.message}")
        return res.value

    def _publish_fanout(self, machine: Machine, transition: HoursTransition) -> None:
        if not transition.triggers:
            return
        type_id = transition.system_events[0].type_id
        recipients = machine.notification_recipients()
        for trigger in transition.triggers:
            title, message = render_notification(machine, trigger)
            for user_id in recipients:
                self.outbox.publish(
                    NotificationRequested(
                        user_id=user_id,
                        machine_id=machine.id,
                        title=title,
                        message=message,
                        alarm_id=trigger.alarm_id,
                        context={
                            "times_triggered": trigger.times_triggered,
                            "sequence": trigger.sequence,
                            "crossed_at_hours": trigger.crossed_at_hours,
                            "related_parts": list(trigger.related_parts),
                        },
                    )
                )
        self.outbox.publish(
            EventTypeUsed(type_id=type_id, machine_id=machine.id, count=len(transition.system_events))
        )

    def _advance(self, machine_id: str, actor_id: str, compute_total, *, now, operation: str) -> Result[HoursTransition]:
        def apply(m: Machine) -> Result[HoursTransition]:
            total = compute_total(m)
            check = m.check_meter_reading(total)
            if not check.ok:
                return Result.failure(check.error)
            # le catalogue n'est touché que si un déclenchement va être écrit
            type_id = self._maintenance_type_id() if m.alarms_due(check.value) else None
            return m.record_operating_hours(
                total,
                now=now,
                maintenance_type_id=type_id,
                events_cap=settings.EVENTS_HISTORY_CAP,
            )

        res = self.writer.mutate(
            machine_id,
            apply,
            operation=operation,
            after=self._publish_fanout,
        )
        if res.ok:
            tr = res.value
            logger.info(
                "operating hours recorded",
                extra={
                    "machine_id": machine_id,
                    "actor_id": actor_id,
                    "previous": tr.previous_total,
                    "new_total": tr.new_total,
                    "fired": tr.fired_count,
                },
            )
        return res

    def record_operating_hours(
        self, machine_id: str, new_total: float, actor_id: str = SYSTEM_ACTOR, *, now=None
    ) -> Result[HoursTransition]:
        if not is_finite_number(new_total):
            return invalid("Operating hours must be a finite number", "operating_hours")
        return self._advance(
            machine_id, actor_id, lambda m: new_total, now=now or utcnow(), operation="record_operating_hours"
        )

    def add_operating_hours(
        self, machine_id: str, delta: float, actor_id: str = SYSTEM_ACTOR, *, now=None
    ) -> Result[HoursTransition]:
        """Ajoute `delta` au compteur (relu à chaque tentative compare-and-set)."""
        if not is_finite_number(delta) or delta < 0:
            return invalid("Operating hours delta must be a number >= 0", "delta_hours")
        return self._advance(
            machine_id,
            actor_id,
            lambda m: m.operating_hours + float(delta),
            now=now or utcnow(),
            operation="add_operating_hours",
        )
