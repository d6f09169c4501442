from __future__ import annotations
"""server/fleet/domain/records.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Objets-valeurs embarqués dans l'agrégat Machine.

- QuickCheckRecord / MachineEvent : append-only, immuables une fois ajoutés.
- MaintenanceAlarm : mutable, mais uniquement via copies (`dataclasses.replace`)
  produites par l'agrégat ou par le moteur d'alarmes.

Chaque entrée porte un id local (hex uuid4) pour l'adressage externe
(édition / détail) sans devenir un agrégat à part entière.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional


def new_entry_id() -> str:
    return uuid.uuid4().hex


class MachineStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"
    RETIRED = "RETIRED"

    def can_transition_to(self, other: "MachineStatus") -> bool:
        return other in _STATUS_TRANSITIONS[self]

    @property
    def allows_provider(self) -> bool:
        return self is not MachineStatus.RETIRED


_STATUS_TRANSITIONS: dict[MachineStatus, frozenset[MachineStatus]] = {
    MachineStatus.ACTIVE: frozenset(
        {MachineStatus.MAINTENANCE, MachineStatus.OUT_OF_SERVICE, MachineStatus.RETIRED}
    ),
    MachineStatus.MAINTENANCE: frozenset(
        {MachineStatus.ACTIVE, MachineStatus.OUT_OF_SERVICE, MachineStatus.RETIRED}
    ),
    MachineStatus.OUT_OF_SERVICE: frozenset(
        {MachineStatus.ACTIVE, MachineStatus.MAINTENANCE, MachineStatus.RETIRED}
    ),
    # Retirée : décision finale
    MachineStatus.RETIRED: frozenset(),
}


class QuickCheckResult(str, enum.Enum):
    APPROVED = "approved"
    DISAPPROVED = "disapproved"
    NOT_INITIATED = "notInitiated"


class ItemResult(str, enum.Enum):
    APPROVED = "approved"
    DISAPPROVED = "disapproved"
    OMITTED = "omitted"


class HistoryCollection(str, enum.Enum):
    """Noms des colonnes JSON embarquées (= noms de collections)."""
    QUICK_CHECKS = "quick_checks"
    EVENTS = "events_history"
    ALARMS = "maintenance_alarms"


@dataclass(frozen=True)
class QuickCheckItem:
    name: str
    result: ItemResult | str
    description: Optional[str] = None


@dataclass(frozen=True)
class QuickCheckRecord:
    result: QuickCheckResult | str
    executed_by_id: str
    responsible_name: str
    responsible_worker_id: str
    items: tuple[QuickCheckItem, ...]
    created_at: datetime
    observations: Optional[str] = None
    id: str = field(default_factory=new_entry_id)


@dataclass(frozen=True)
class MachineEvent:
    type_id: str
    title: str
    created_by: str
    created_at: datetime
    description: Optional[str] = None
    is_system_generated: bool = False
    metadata: Optional[Mapping[str, Any]] = None
    id: str = field(default_factory=new_entry_id)


@dataclass(frozen=True)
class MaintenanceAlarm:
    title: str
    interval_hours: float
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    related_parts: tuple[str, ...] = ()
    accumulated_hours: float = 0.0
    is_active: bool = True
    times_triggered: int = 0
    last_triggered_at: Optional[datetime] = None
    # Ancien modèle "seuil absolu" : valeur du compteur au dernier déclenchement.
    # Affichage uniquement, jamais utilisée pour décider d'un déclenchement.
    last_triggered_hours: Optional[float] = None
    id: str = field(default_factory=new_entry_id)

    @property
    def hours_remaining(self) -> float:
        return max(self.interval_hours - self.accumulated_hours, 0.0)

    @property
    def progress_pct(self) -> float:
        """Progression vers le prochain déclenchement (0..100)."""
        if self.interval_hours <= 0:
            return 0.0
        return round(min(self.accumulated_hours / self.interval_hours, 1.0) * 100, 1)
