# server/fleet/infrastructure/messaging/events.py
from __future__ import annotations
"""
Intentions outbox (simples dataclasses) produites par les services et consommées
par le worker. Indépendantes de l'ORM ; `to_payload()` donne le JSON stocké.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Mapping, Optional

NOTIFICATION_REQUESTED = "notification.requested"
EVENT_TYPE_USED = "event_type.used"


@dataclass(frozen=True)
class NotificationRequested:
    """Une notification pour UN destinataire (une ligne outbox par destinataire)."""
    TYPE: ClassVar[str] = NOTIFICATION_REQUESTED

    user_id: str
    machine_id: str
    title: str
    message: str
    kind: str = "maintenance_alarm"
    alarm_id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict:
        out = asdict(self)
        out["context"] = dict(self.context)
        return out


@dataclass(frozen=True)
class EventTypeUsed:
    """Incrément différé du compteur de popularité d'un type d'évènement."""
    TYPE: ClassVar[str] = EVENT_TYPE_USED

    type_id: str
    machine_id: str
    count: int = 1

    def to_payload(self) -> dict:
        return asdict(self)
