from __future__ import annotations
"""server/fleet/domain/machine.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Agrégat Machine : état scalaire + trois historiques embarqués.

- quick_checks       : append-only, plus récent en tête, soft cap
- events_history     : append-only, plus récent en tête, soft cap
- maintenance_alarms : mutables, désactivées (is_active=False) mais jamais supprimées

Invariants gardés ici, AVANT toute écriture :
- operating_hours ne recule jamais ; les alarmes n'avancent qu'à partir de ses deltas
- une mutation invalide ne modifie rien (pas d'application partielle)

Les méthodes retournent un `Result` ; elles ne lèvent pas pour les cas métier.
Chaque mutation marque les colonnes touchées (`dirty_fields`) : le repository
n'écrit que celles-ci, en compare-and-set sur `version`.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from fleet.domain import alarm_engine
from fleet.domain.alarm_engine import TriggerOutcome
from fleet.domain.errors import DomainRuleError, Result, invalid, not_found
from fleet.domain.records import (
    ItemResult,
    MachineEvent,
    MachineStatus,
    MaintenanceAlarm,
    QuickCheckItem,
    QuickCheckRecord,
    QuickCheckResult,
    new_entry_id,
)
from fleet.domain.usage_schedule import UsageSchedule

SYSTEM_ACTOR = "system"

# Bornes de validation
MAX_BRAND_LEN = 50
MAX_MODEL_LEN = 50
MAX_NICKNAME_LEN = 30
MAX_SERIAL_LEN = 64
MAX_RESPONSIBLE_NAME_LEN = 100
MAX_WORKER_ID_LEN = 50
MAX_ITEM_NAME_LEN = 100
MAX_ITEM_DESCRIPTION_LEN = 500
MAX_OBSERVATIONS_LEN = 1000
MAX_EVENT_TITLE_LEN = 200
MAX_EVENT_DESCRIPTION_LEN = 2000
MAX_ALARM_TITLE_LEN = 100
MAX_ALARM_DESCRIPTION_LEN = 500
MAX_RELATED_PARTS = 20


@dataclass(frozen=True)
class AlarmChanges:
    """Édition utilisateur d'une alarme ; None = champ inchangé."""
    title: Optional[str] = None
    description: Optional[str] = None
    related_parts: Optional[tuple[str, ...]] = None
    interval_hours: Optional[float] = None
    is_active: Optional[bool] = None


@dataclass(frozen=True)
class HoursTransition:
    """Résultat d'un `record_operating_hours` : une seule transition d'état."""
    previous_total: float
    new_total: float
    delta: float
    triggers: tuple[TriggerOutcome, ...] = ()
    system_events: tuple[MachineEvent, ...] = ()

    @property
    def fired_count(self) -> int:
        return len(self.triggers)


def _blank(v: Optional[str]) -> bool:
    return v is None or not str(v).strip()


def is_finite_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _coerce(enum_cls, raw, field_name: str):
    try:
        return enum_cls(raw), None
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        return None, f"Invalid {field_name} {raw!r} (allowed: {allowed})"


def prepend_capped(entries: list, entry, cap: Optional[int]) -> list:
    """
    Ajoute en tête en respectant le soft cap : les plus anciens (fin de liste)
    sont évincés AVANT l'insertion, la liste ne dépasse jamais `cap`.
    """
    if cap is not None and cap > 0:
        entries = entries[: cap - 1]
    return [entry, *entries]


@dataclass
class Machine:
    serial_number: str
    brand: str
    model_name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    status: MachineStatus = MachineStatus.ACTIVE
    nickname: Optional[str] = None
    assigned_provider_id: Optional[str] = None
    operating_hours: float = 0.0
    specs: dict = field(default_factory=dict)
    usage_schedule: Optional[UsageSchedule] = None
    quick_checks: list[QuickCheckRecord] = field(default_factory=list)
    events_history: list[MachineEvent] = field(default_factory=list)
    maintenance_alarms: list[MaintenanceAlarm] = field(default_factory=list)
    version: int = 0
    id: str = field(default_factory=new_entry_id)
    dirty_fields: set[str] = field(default_factory=set, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Création
    # ------------------------------------------------------------------
    @classmethod
    def register(
        cls,
        *,
        serial_number: str,
        brand: str,
        model_name: str,
        owner_id: str,
        now: datetime,
        nickname: Optional[str] = None,
        operating_hours: float = 0.0,
        specs: Optional[Mapping[str, Any]] = None,
        usage_schedule: Optional[UsageSchedule] = None,
        status: MachineStatus | str = MachineStatus.ACTIVE,
    ) -> Result["Machine"]:
        if _blank(serial_number):
            return invalid("Serial number is required", "serial_number")
        if len(serial_number.strip()) > MAX_SERIAL_LEN:
            return invalid(f"Serial number cannot exceed {MAX_SERIAL_LEN} characters", "serial_number")
        if _blank(brand):
            return invalid("Brand is required", "brand")
        if len(brand.strip()) > MAX_BRAND_LEN:
            return invalid("Brand name is too long", "brand")
        if _blank(model_name):
            return invalid("Model name is required", "model_name")
        if len(model_name.strip()) > MAX_MODEL_LEN:
            return invalid("Model name is too long", "model_name")
        if nickname and len(nickname.strip()) > MAX_NICKNAME_LEN:
            return invalid("Nickname is too long", "nickname")
        if _blank(owner_id):
            return invalid("Owner is required", "owner_id")
        if not is_finite_number(operating_hours) or operating_hours < 0:
            return invalid("Operating hours must be a number >= 0", "operating_hours")

        st, msg = _coerce(MachineStatus, status, "status")
        if st is None:
            return invalid(msg, "status")

        return Result.success(
            cls(
                serial_number=serial_number.strip(),
                brand=brand.strip(),
                model_name=model_name.strip(),
                owner_id=owner_id,
                nickname=nickname.strip() if nickname else None,
                status=st,
                operating_hours=float(operating_hours),
                specs=dict(specs or {}),
                usage_schedule=usage_schedule,
                created_at=now,
                updated_at=now,
            )
        )

    def _touch(self, now: datetime, *columns: str) -> None:
        self.updated_at = now
        self.dirty_fields.update(columns)
        self.dirty_fields.add("updated_at")

    # ------------------------------------------------------------------
    # Statut / provider / planning
    # ------------------------------------------------------------------
    def change_status(self, new_status: MachineStatus | str, *, now: datetime) -> Result[MachineStatus]:
        target, msg = _coerce(MachineStatus, new_status, "status")
        if target is None:
            return invalid(msg, "status")
        if target is self.status:
            return Result.failure(DomainRuleError(f"Machine is already in {target.value} status", field="status"))
        if not self.status.can_transition_to(target):
            return Result.failure(
                DomainRuleError(
                    f"Invalid status transition from {self.status.value} to {target.value}",
                    field="status",
                )
            )
        self.status = target
        self._touch(now, "status")
        return Result.success(target)

    def assign_provider(self, provider_id: str, *, now: datetime) -> Result[str]:
        if _blank(provider_id):
            return invalid("Provider id is required", "assigned_provider_id")
        if not self.status.allows_provider:
            return Result.failure(DomainRuleError("Cannot assign provider to retired machine"))
        if self.assigned_provider_id == provider_id:
            return Result.failure(DomainRuleError("Provider is already assigned to this machine"))
        self.assigned_provider_id = provider_id
        self._touch(now, "assigned_provider_id")
        return Result.success(provider_id)

    def remove_provider(self, *, now: datetime) -> Result[None]:
        if self.assigned_provider_id is None:
            return Result.failure(DomainRuleError("No provider is currently assigned to this machine"))
        self.assigned_provider_id = None
        self._touch(now, "assigned_provider_id")
        return Result.success(None)

    def update_usage_schedule(self, schedule: Optional[UsageSchedule], *, now: datetime) -> Result[Optional[UsageSchedule]]:
        self.usage_schedule = schedule
        self._touch(now, "usage_schedule")
        return Result.success(schedule)

    def notification_recipients(self) -> list[str]:
        """Propriétaire + provider assigné (dédoublonnés, ordre stable)."""
        out = [self.owner_id]
        if self.assigned_provider_id and self.assigned_provider_id != self.owner_id:
            out.append(self.assigned_provider_id)
        return out

    # ------------------------------------------------------------------
    # QuickChecks
    # ------------------------------------------------------------------
    def add_quick_check_record(self, record: QuickCheckRecord, *, cap: Optional[int] = None) -> Result[QuickCheckRecord]:
        """
        Valide puis ajoute un QuickCheck en tête d'historique. Ne touche pas aux alarmes.

        Règles :
        - pas de QuickCheck sur une machine retirée
        - responsable (nom + n° de travailleur) obligatoire, longueurs bornées
        - au moins un item ; résultats d'items dans approved/disapproved/omitted
        - cohérence résultat global / items :
            tous approved → approved ; un disapproved → pas approved ;
            notInitiated seulement si tous omitted
        """
        if self.status is MachineStatus.RETIRED:
            return Result.failure(DomainRuleError("Cannot add QuickCheck to retired machine"))

        if _blank(record.responsible_name):
            return invalid("Responsible name is required for QuickCheck", "responsible_name")
        if _blank(record.responsible_worker_id):
            return invalid("Responsible worker ID is required for QuickCheck", "responsible_worker_id")
        if len(record.responsible_name.strip()) > MAX_RESPONSIBLE_NAME_LEN:
            return invalid(
                f"Responsible name cannot exceed {MAX_RESPONSIBLE_NAME_LEN} characters", "responsible_name"
            )
        if len(record.responsible_worker_id.strip()) > MAX_WORKER_ID_LEN:
            return invalid(
                f"Responsible worker ID cannot exceed {MAX_WORKER_ID_LEN} characters", "responsible_worker_id"
            )
        if _blank(record.executed_by_id):
            return invalid("Executor is required for QuickCheck", "executed_by_id")
        if record.observations and len(record.observations) > MAX_OBSERVATIONS_LEN:
            return invalid(f"Observations cannot exceed {MAX_OBSERVATIONS_LEN} characters", "observations")

        result, msg = _coerce(QuickCheckResult, record.result, "result")
        if result is None:
            return invalid(msg, "result")

        if not record.items:
            return invalid("QuickCheck must have at least one item", "items")

        items: list[QuickCheckItem] = []
        for idx, item in enumerate(record.items):
            if _blank(item.name):
                return invalid("Item name is required", f"items[{idx}].name")
            if len(item.name.strip()) > MAX_ITEM_NAME_LEN:
                return invalid(f"Item name cannot exceed {MAX_ITEM_NAME_LEN} characters", f"items[{idx}].name")
            if item.description and len(item.description) > MAX_ITEM_DESCRIPTION_LEN:
                return invalid(
                    f"Item description cannot exceed {MAX_ITEM_DESCRIPTION_LEN} characters",
                    f"items[{idx}].description",
                )
            item_result, msg = _coerce(ItemResult, item.result, "item result")
            if item_result is None:
                return invalid(msg, f"items[{idx}].result")
            items.append(replace(item, name=item.name.strip(), result=item_result))

        all_approved = all(i.result is ItemResult.APPROVED for i in items)
        any_disapproved = any(i.result is ItemResult.DISAPPROVED for i in items)
        all_omitted = all(i.result is ItemResult.OMITTED for i in items)

        if all_approved and result is not QuickCheckResult.APPROVED:
            return invalid("Result should be approved when all items are approved", "result")
        if any_disapproved and result is QuickCheckResult.APPROVED:
            return invalid("Result cannot be approved when items are disapproved", "result")
        if result is QuickCheckResult.NOT_INITIATED and not all_omitted:
            return invalid("Result 'notInitiated' is only allowed when all items are 'omitted'", "result")

        normalized = replace(
            record,
            result=result,
            items=tuple(items),
            responsible_name=record.responsible_name.strip(),
            responsible_worker_id=record.responsible_worker_id.strip(),
        )
        self.quick_checks = prepend_capped(self.quick_checks, normalized, cap)
        self._touch(record.created_at, "quick_checks")
        return Result.success(normalized)

    # ------------------------------------------------------------------
    # Évènements
    # ------------------------------------------------------------------
    @staticmethod
    def validate_event(event: MachineEvent) -> Result[MachineEvent]:
        if _blank(event.title):
            return invalid("Event title is required", "title")
        if len(event.title.strip()) > MAX_EVENT_TITLE_LEN:
            return invalid(f"Event title cannot exceed {MAX_EVENT_TITLE_LEN} characters", "title")
        if event.description is not None and len(event.description.strip()) > MAX_EVENT_DESCRIPTION_LEN:
            return invalid(
                f"Event description cannot exceed {MAX_EVENT_DESCRIPTION_LEN} characters", "description"
            )
        if _blank(event.type_id):
            return invalid("Event type is required", "type_id")
        if _blank(event.created_by):
            return invalid("Event creator is required", "created_by")
        return Result.success(
            replace(
                event,
                title=event.title.strip(),
                description=event.description.strip() if event.description else None,
                metadata=dict(event.metadata) if event.metadata else None,
            )
        )

    def add_event(self, event: MachineEvent, *, cap: Optional[int] = None) -> Result[MachineEvent]:
        """Valide et ajoute un évènement en tête ; soft cap avec éviction des plus anciens."""
        res = self.validate_event(event)
        if not res.ok:
            return res
        self.events_history = prepend_capped(self.events_history, res.value, cap)
        self._touch(event.created_at, "events_history")
        return res

    # ------------------------------------------------------------------
    # Compteur d'heures + alarmes
    # ------------------------------------------------------------------
    def check_meter_reading(self, new_total: float) -> Result[float]:
        """Valide un nouveau total contre le compteur courant ; retourne le delta."""
        if not is_finite_number(new_total):
            return invalid("Operating hours must be a finite number", "operating_hours")
        if new_total < 0:
            return invalid("Operating hours must be >= 0", "operating_hours")
        if new_total < self.operating_hours:
            return invalid(
                f"Operating hours cannot decrease (current={self.operating_hours:g}, received={new_total:g})",
                "operating_hours",
            )
        return Result.success(float(new_total) - self.operating_hours)

    def alarms_due(self, delta_hours: float) -> bool:
        return any(alarm_engine.would_fire(a, delta_hours) for a in self.maintenance_alarms)

    def record_operating_hours(
        self,
        new_total: float,
        *,
        now: datetime,
        maintenance_type_id: Optional[str] = None,
        events_cap: Optional[int] = None,
    ) -> Result[HoursTransition]:
        """
        Enregistre un nouveau total du compteur.

        - new_total < operating_hours → ValidationError, rien ne change
        - delta transmis au moteur pour chaque alarme (les inactives restent gelées)
        - compteur, alarmes et évènements système changent ensemble : une seule
          transition, persistée par un seul UPDATE
        - `maintenance_type_id` n'est exigé que si une alarme se déclenche
        """
        check = self.check_meter_reading(new_total)
        if not check.ok:
            return Result.failure(check.error)

        previous = self.operating_hours
        delta = check.value
        if delta == 0:
            return Result.success(HoursTransition(previous_total=previous, new_total=previous, delta=0.0))

        adv = alarm_engine.advance_all(self.maintenance_alarms, delta, now=now, meter_before=previous)
        if not adv.ok:
            return Result.failure(adv.error)
        alarms, triggers = adv.value
        if triggers and not maintenance_type_id:
            return invalid("A maintenance event type is required to record triggered alarms", "maintenance_type_id")

        events = [self._system_event_for(t, maintenance_type_id) for t in triggers]

        # Tout est calculé : on applique d'un bloc.
        history = self.events_history
        for ev in events:  # plus ancien franchissement d'abord → le dernier finit en tête
            history = prepend_capped(history, ev, events_cap)

        self.operating_hours = float(new_total)
        self.maintenance_alarms = alarms
        self._touch(now, "operating_hours", "maintenance_alarms")
        if events:
            self.events_history = history
            self.dirty_fields.add("events_history")

        return Result.success(
            HoursTransition(
                previous_total=previous,
                new_total=self.operating_hours,
                delta=delta,
                triggers=tuple(triggers),
                system_events=tuple(events),
            )
        )

    def _system_event_for(self, trigger: TriggerOutcome, type_id: str) -> MachineEvent:
        parts = ", ".join(trigger.related_parts)
        description = (
            f'Maintenance alarm "{trigger.alarm_title}" fired after accumulating '
            f"{trigger.interval_hours:g} operating hours."
        )
        if parts:
            description += f" Related parts: {parts}."
        return MachineEvent(
            type_id=type_id,
            title=f"Maintenance due: {trigger.alarm_title}"[:MAX_EVENT_TITLE_LEN],
            description=description[:MAX_EVENT_DESCRIPTION_LEN],
            created_by=SYSTEM_ACTOR,
            created_at=trigger.triggered_at,
            is_system_generated=True,
            metadata={
                "alarm_id": trigger.alarm_id,
                "alarm_title": trigger.alarm_title,
                "interval_hours": trigger.interval_hours,
                "times_triggered": trigger.times_triggered,
                "sequence": trigger.sequence,
                "crossed_at_hours": trigger.crossed_at_hours,
                "related_parts": list(trigger.related_parts),
            },
        )

    # ------------------------------------------------------------------
    # Alarmes : CRUD (sans effet de bord)
    # ------------------------------------------------------------------
    def find_alarm(self, alarm_id: str) -> Optional[MaintenanceAlarm]:
        return next((a for a in self.maintenance_alarms if a.id == alarm_id), None)

    @staticmethod
    def _validate_alarm_fields(
        *,
        title: Optional[str],
        description: Optional[str],
        related_parts: Optional[Iterable[str]],
        interval_hours: Optional[float],
    ) -> Result[None]:
        if title is not None:
            if _blank(title):
                return invalid("Alarm title is required", "title")
            if len(title.strip()) > MAX_ALARM_TITLE_LEN:
                return invalid(f"Alarm title cannot exceed {MAX_ALARM_TITLE_LEN} characters", "title")
        if description is not None and len(description) > MAX_ALARM_DESCRIPTION_LEN:
            return invalid(f"Alarm description cannot exceed {MAX_ALARM_DESCRIPTION_LEN} characters", "description")
        if related_parts is not None:
            parts = list(related_parts)
            if len(parts) > MAX_RELATED_PARTS:
                return invalid(f"An alarm cannot list more than {MAX_RELATED_PARTS} related parts", "related_parts")
            if any(_blank(p) for p in parts):
                return invalid("Related part names cannot be empty", "related_parts")
        if interval_hours is not None and (not is_finite_number(interval_hours) or interval_hours <= 0):
            return invalid("interval must be > 0", "interval_hours")
        return Result.success(None)

    def create_alarm(
        self,
        *,
        title: str,
        interval_hours: float,
        created_by: str,
        now: datetime,
        description: str = "",
        related_parts: Iterable[str] = (),
        accumulated_hours: float = 0.0,
    ) -> Result[MaintenanceAlarm]:
        if title is None:
            return invalid("Alarm title is required", "title")
        if interval_hours is None:
            return invalid("interval must be > 0", "interval_hours")
        parts = tuple(p.strip() for p in (related_parts or ()) if p is not None)
        check = self._validate_alarm_fields(
            title=title, description=description, related_parts=parts, interval_hours=interval_hours
        )
        if not check.ok:
            return Result.failure(check.error)
        if _blank(created_by):
            return invalid("Alarm creator is required", "created_by")
        if not is_finite_number(accumulated_hours) or accumulated_hours < 0:
            return invalid("Accumulated hours must be >= 0", "accumulated_hours")
        if accumulated_hours >= interval_hours:
            return invalid("Accumulated hours must be lower than the interval", "accumulated_hours")

        alarm = MaintenanceAlarm(
            title=title.strip(),
            description=(description or "").strip(),
            related_parts=parts,
            interval_hours=float(interval_hours),
            accumulated_hours=float(accumulated_hours),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.maintenance_alarms = [*self.maintenance_alarms, alarm]
        self._touch(now, "maintenance_alarms")
        return Result.success(alarm)

    def _replace_alarm(self, updated: MaintenanceAlarm, now: datetime) -> None:
        self.maintenance_alarms = [updated if a.id == updated.id else a for a in self.maintenance_alarms]
        self._touch(now, "maintenance_alarms")

    def update_alarm(self, alarm_id: str, changes: AlarmChanges, *, now: datetime) -> Result[MaintenanceAlarm]:
        """
        Édition utilisateur (titre, description, pièces, intervalle, actif).
        L'accumulateur n'est pas touché : une alarme réactivée reprend là où elle
        s'était arrêtée. Un intervalle ramené à l'accumulateur ou en dessous est
        refusé (reset_alarm d'abord) : 0 <= accumulated < interval tient toujours.
        """
        current = self.find_alarm(alarm_id)
        if current is None:
            return not_found(f"Maintenance alarm {alarm_id} not found in machine {self.id}", "alarm_id")

        check = self._validate_alarm_fields(
            title=changes.title,
            description=changes.description,
            related_parts=changes.related_parts,
            interval_hours=changes.interval_hours,
        )
        if not check.ok:
            return Result.failure(check.error)
        if changes.interval_hours is not None and changes.interval_hours <= current.accumulated_hours:
            return invalid(
                f"Interval must be greater than the accumulated hours ({current.accumulated_hours:g})",
                "interval_hours",
            )

        updates: dict[str, Any] = {}
        if changes.title is not None:
            updates["title"] = changes.title.strip()
        if changes.description is not None:
            updates["description"] = changes.description.strip()
        if changes.related_parts is not None:
            updates["related_parts"] = tuple(p.strip() for p in changes.related_parts)
        if changes.interval_hours is not None:
            updates["interval_hours"] = float(changes.interval_hours)
        if changes.is_active is not None:
            updates["is_active"] = bool(changes.is_active)
        if not updates:
            return Result.success(current)

        updated = replace(current, updated_at=now, **updates)
        self._replace_alarm(updated, now)
        return Result.success(updated)

    def deactivate_alarm(self, alarm_id: str, *, now: datetime) -> Result[MaintenanceAlarm]:
        """Suppression logique : is_active=False, historique de déclenchements conservé."""
        return self.update_alarm(alarm_id, AlarmChanges(is_active=False), now=now)

    def reset_alarm(self, alarm_id: str, *, now: datetime) -> Result[MaintenanceAlarm]:
        """Maintenance faite à la main : l'accumulateur repart de zéro."""
        current = self.find_alarm(alarm_id)
        if current is None:
            return not_found(f"Maintenance alarm {alarm_id} not found in machine {self.id}", "alarm_id")
        updated = replace(current, accumulated_hours=0.0, updated_at=now)
        self._replace_alarm(updated, now)
        return Result.success(updated)
