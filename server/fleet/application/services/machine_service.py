from __future__ import annotations
"""server/fleet/application/services/machine_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
Cycle de vie de la machine : enregistrement, statut, provider, programme d'utilisation.
"""
import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleet.core.utils.datetime import utcnow
from fleet.domain.errors import DomainRuleError, PersistenceError, Result, not_found
from fleet.domain.machine import Machine
from fleet.domain.records import MachineStatus
from fleet.domain.usage_schedule import DayOfWeek, UsageSchedule
from fleet.application.services.aggregate_writer import AggregateWriter
from fleet.infrastructure.persistence.repositories.machine_repository import MachineRepository

logger = logging.getLogger(__name__)


class MachineService:
    def __init__(self, session: Session) -> None:
        self.s = session
        self.machines = MachineRepository(session)
        self.writer = AggregateWriter(session)

    def register_machine(
        self,
        actor_id: str,
        *,
        serial_number: str,
        brand: str,
        model_name: str,
        owner_id: Optional[str] = None,
        nickname: Optional[str] = None,
        operating_hours: float = 0.0,
        specs: Optional[Mapping[str, Any]] = None,
        daily_hours: Optional[float] = None,
        operating_days: Optional[Iterable[DayOfWeek | str]] = None,
        now=None,
    ) -> Result[Machine]:
        """Le propriétaire par défaut est l'acteur qui enregistre."""
        schedule = None
        if daily_hours is not None or operating_days:
            sched = UsageSchedule.create(daily_hours, operating_days or [])
            if not sched.ok:
                return Result.failure(sched.error)
            schedule = sched.value

        res = Machine.register(
            serial_number=serial_number,
            brand=brand,
            model_name=model_name,
            owner_id=owner_id or actor_id,
            nickname=nickname,
            operating_hours=operating_hours,
            specs=specs,
            usage_schedule=schedule,
            now=now or utcnow(),
        )
        if not res.ok:
            return res
        machine = res.value

        if self.machines.serial_exists(machine.serial_number):
            return Result.failure(
                DomainRuleError(f"Serial number {machine.serial_number} already exists", field="serial_number")
            )
        try:
            self.machines.create(machine)
            self.s.commit()
        except (SQLAlchemyError, PersistenceError) as exc:
            self.s.rollback()
            if self.machines.serial_exists(machine.serial_number):
                return Result.failure(
                    DomainRuleError(f"Serial number {machine.serial_number} already exists", field="serial_number")
                )
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError("Storage failure during machine registration") from exc

        logger.info("machine registered", extra={"machine_id": machine.id, "actor_id": actor_id})
        return Result.success(machine)

    def get_machine(self, machine_id: str) -> Result[Machine]:
        m = self.machines.get(machine_id)
        if m is None:
            return not_found(f"Machine {machine_id} not found", "machine_id")
        return Result.success(m)

    def change_status(self, machine_id: str, new_status: MachineStatus | str, actor_id: str, *, now=None) -> Result[MachineStatus]:
        now = now or utcnow()
        res = self.writer.mutate(
            machine_id, lambda m: m.change_status(new_status, now=now), operation="change_status"
        )
        if res.ok:
            logger.info("machine status changed", extra={"machine_id": machine_id, "status": res.value.value, "actor_id": actor_id})
        return res

    def assign_provider(self, machine_id: str, provider_id: str, actor_id: str, *, now=None) -> Result[str]:
        now = now or utcnow()
        return self.writer.mutate(
            machine_id, lambda m: m.assign_provider(provider_id, now=now), operation="assign_provider"
        )

    def remove_provider(self, machine_id: str, actor_id: str, *, now=None) -> Result[None]:
        now = now or utcnow()
        return self.writer.mutate(machine_id, lambda m: m.remove_provider(now=now), operation="remove_provider")

    def update_usage_schedule(
        self,
        machine_id: str,
        actor_id: str,
        *,
        daily_hours: Optional[float],
        operating_days: Optional[Iterable[DayOfWeek | str]],
        now=None,
    ) -> Result[Optional[UsageSchedule]]:
        """daily_hours=None et operating_days=None : suppression du programme."""
        schedule = None
        if daily_hours is not None or operating_days is not None:
            sched = UsageSchedule.create(daily_hours, operating_days or [])
            if not sched.ok:
                return Result.failure(sched.error)
            schedule = sched.value
        now = now or utcnow()
        return self.writer.mutate(
            machine_id, lambda m: m.update_usage_schedule(schedule, now=now), operation="update_usage_schedule"
        )
