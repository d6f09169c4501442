from __future__ import annotations
"""server/fleet/infrastructure/persistence/mappers.py
~~~~~~~~~~~~~~~~~~~~~~~~
Conversions domaine <-> documents JSON stockés dans la ligne `machines`.

Les dates des entrées embarquées sont sérialisées via `to_iso` (texte UTC à
largeur fixe) pour que le pipeline SQL puisse trier / filtrer sur `created_at`.
"""
import enum
from typing import Any, Iterable, Mapping, Optional

from fleet.core.utils.datetime import as_utc, from_iso, to_iso
from fleet.domain.machine import Machine
from fleet.domain.records import (
    ItemResult,
    MachineEvent,
    MachineStatus,
    MaintenanceAlarm,
    QuickCheckItem,
    QuickCheckRecord,
    QuickCheckResult,
)
from fleet.domain.usage_schedule import DayOfWeek, UsageSchedule
from fleet.infrastructure.persistence.database.models.machine import MachineDocument


def _val(v: Any) -> Any:
    return v.value if isinstance(v, enum.Enum) else v


# ---------------------------------------------------------------------------
# QuickChecks
# ---------------------------------------------------------------------------
def quick_check_to_dict(r: QuickCheckRecord) -> dict:
    return {
        "id": r.id,
        "result": _val(r.result),
        "created_at": to_iso(r.created_at),
        "executed_by_id": r.executed_by_id,
        "responsible_name": r.responsible_name,
        "responsible_worker_id": r.responsible_worker_id,
        "items": [
            {"name": i.name, "result": _val(i.result), "description": i.description}
            for i in r.items
        ],
        "observations": r.observations,
    }


def quick_check_from_dict(d: Mapping[str, Any]) -> QuickCheckRecord:
    return QuickCheckRecord(
        id=d["id"],
        result=QuickCheckResult(d["result"]),
        created_at=from_iso(d["created_at"]),
        executed_by_id=d.get("executed_by_id") or "",
        responsible_name=d.get("responsible_name") or "",
        responsible_worker_id=d.get("responsible_worker_id") or "",
        items=tuple(
            QuickCheckItem(name=i["name"], result=ItemResult(i["result"]), description=i.get("description"))
            for i in d.get("items") or []
        ),
        observations=d.get("observations"),
    )


# ---------------------------------------------------------------------------
# Évènements
# ---------------------------------------------------------------------------
def event_to_dict(e: MachineEvent) -> dict:
    return {
        "id": e.id,
        "type_id": e.type_id,
        "title": e.title,
        "description": e.description,
        "created_by": e.created_by,
        "created_at": to_iso(e.created_at),
        "is_system_generated": bool(e.is_system_generated),
        "metadata": dict(e.metadata) if e.metadata else None,
    }


def event_from_dict(d: Mapping[str, Any]) -> MachineEvent:
    return MachineEvent(
        id=d["id"],
        type_id=d["type_id"],
        title=d["title"],
        description=d.get("description"),
        created_by=d.get("created_by") or "",
        created_at=from_iso(d["created_at"]),
        is_system_generated=bool(d.get("is_system_generated", False)),
        metadata=d.get("metadata"),
    )


# ---------------------------------------------------------------------------
# Alarmes
# ---------------------------------------------------------------------------
def alarm_to_dict(a: MaintenanceAlarm) -> dict:
    return {
        "id": a.id,
        "title": a.title,
        "description": a.description,
        "related_parts": list(a.related_parts),
        "interval_hours": a.interval_hours,
        "accumulated_hours": a.accumulated_hours,
        "is_active": a.is_active,
        "created_by": a.created_by,
        "times_triggered": a.times_triggered,
        "last_triggered_at": to_iso(a.last_triggered_at),
        "last_triggered_hours": a.last_triggered_hours,
        "created_at": to_iso(a.created_at),
        "updated_at": to_iso(a.updated_at),
    }


def alarm_from_dict(d: Mapping[str, Any]) -> MaintenanceAlarm:
    return MaintenanceAlarm(
        id=d["id"],
        title=d["title"],
        description=d.get("description") or "",
        related_parts=tuple(d.get("related_parts") or ()),
        interval_hours=float(d["interval_hours"]),
        accumulated_hours=float(d.get("accumulated_hours") or 0.0),
        is_active=bool(d.get("is_active", True)),
        created_by=d.get("created_by") or "",
        times_triggered=int(d.get("times_triggered") or 0),
        last_triggered_at=from_iso(d.get("last_triggered_at")),
        last_triggered_hours=d.get("last_triggered_hours"),
        created_at=from_iso(d["created_at"]),
        updated_at=from_iso(d.get("updated_at") or d["created_at"]),
    )


# ---------------------------------------------------------------------------
# Programme d'utilisation
# ---------------------------------------------------------------------------
def schedule_to_dict(s: Optional[UsageSchedule]) -> Optional[dict]:
    if s is None:
        return None
    return {"daily_hours": s.daily_hours, "operating_days": [d.value for d in s.operating_days]}


def schedule_from_dict(d: Optional[Mapping[str, Any]]) -> Optional[UsageSchedule]:
    if not d:
        return None
    return UsageSchedule(
        daily_hours=float(d["daily_hours"]),
        operating_days=tuple(DayOfWeek(x) for x in d.get("operating_days") or ()),
    )


# ---------------------------------------------------------------------------
# Machine <-> ligne
# ---------------------------------------------------------------------------
_COLUMN_DUMPERS = {
    "status": lambda m: _val(m.status),
    "nickname": lambda m: m.nickname,
    "assigned_provider_id": lambda m: m.assigned_provider_id,
    "operating_hours": lambda m: m.operating_hours,
    "specs": lambda m: dict(m.specs),
    "usage_schedule": lambda m: schedule_to_dict(m.usage_schedule),
    "quick_checks": lambda m: [quick_check_to_dict(r) for r in m.quick_checks],
    "events_history": lambda m: [event_to_dict(e) for e in m.events_history],
    "maintenance_alarms": lambda m: [alarm_to_dict(a) for a in m.maintenance_alarms],
    "updated_at": lambda m: as_utc(m.updated_at),
}


def column_values(machine: Machine, columns: Iterable[str]) -> dict:
    """Valeurs SQL des seules colonnes demandées (les colonnes « sales »)."""
    out: dict = {}
    for col in columns:
        dumper = _COLUMN_DUMPERS.get(col)
        if dumper is None:
            raise KeyError(f"column {col!r} is not writable")
        out[col] = dumper(machine)
    return out


def machine_to_row(machine: Machine) -> MachineDocument:
    return MachineDocument(
        id=machine.id,
        serial_number=machine.serial_number,
        brand=machine.brand,
        model_name=machine.model_name,
        owner_id=machine.owner_id,
        created_at=as_utc(machine.created_at),
        version=machine.version,
        **column_values(machine, _COLUMN_DUMPERS.keys()),
    )


def machine_from_row(row: MachineDocument) -> Machine:
    return Machine(
        id=row.id,
        serial_number=row.serial_number,
        brand=row.brand,
        model_name=row.model_name,
        nickname=row.nickname,
        owner_id=row.owner_id,
        assigned_provider_id=row.assigned_provider_id,
        status=MachineStatus(row.status),
        operating_hours=float(row.operating_hours or 0.0),
        specs=dict(row.specs or {}),
        usage_schedule=schedule_from_dict(row.usage_schedule),
        quick_checks=[quick_check_from_dict(d) for d in row.quick_checks or []],
        events_history=[event_from_dict(d) for d in row.events_history or []],
        maintenance_alarms=[alarm_from_dict(d) for d in row.maintenance_alarms or []],
        version=row.version or 0,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def machine_to_public_dict(machine: Machine) -> dict:
    """
    Vue externe : le compteur est exposé dans `specs.operating_hours`, chaque
    alarme porte ses heures restantes et sa progression.
    """
    return {
        "id": machine.id,
        "serial_number": machine.serial_number,
        "brand": machine.brand,
        "model_name": machine.model_name,
        "nickname": machine.nickname,
        "status": _val(machine.status),
        "owner_id": machine.owner_id,
        "assigned_provider_id": machine.assigned_provider_id,
        "specs": {**machine.specs, "operating_hours": machine.operating_hours},
        "usage_schedule": schedule_to_dict(machine.usage_schedule),
        "maintenance_alarms": [
            {**alarm_to_dict(a), "hours_remaining": a.hours_remaining, "progress_pct": a.progress_pct}
            for a in machine.maintenance_alarms
        ],
        "version": machine.version,
        "created_at": to_iso(machine.created_at),
        "updated_at": to_iso(machine.updated_at),
    }
