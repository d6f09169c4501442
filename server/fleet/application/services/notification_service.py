from __future__ import annotations
"""server/fleet/application/services/notification_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
Contrat du puits de notifications + implémentations.

- NotificationSink : `notify(user_id, payload) -> bool`
- LogNotificationSink : aucun transport configuré, on journalise seulement
- build_sink() : webhook si NOTIFY_WEBHOOK_URL est défini, sinon log

Un échec de notification ne remet jamais en cause le déclenchement d'alarme :
l'intention reste en outbox et le worker la reprogramme.
"""
import logging
from typing import Any, Mapping, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

from fleet.core.config import settings
from fleet.infrastructure.notifications.providers.webhook_provider import WebhookNotificationSink

log = logging.getLogger(__name__)


class NotificationPayload(BaseModel):
    """Charge utile d'une intention `notification.requested` (validée avant envoi)."""

    user_id: str
    machine_id: str
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    kind: str = "maintenance_alarm"
    alarm_id: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_id", "machine_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def body(self) -> dict:
        """Ce qui part vers le puits (le destinataire est passé à part)."""
        return self.model_dump(exclude={"user_id"})


class NotificationSink(Protocol):
    name: str

    def notify(self, user_id: str, payload: Mapping[str, Any]) -> bool: ...


class LogNotificationSink:
    name = "log"

    def notify(self, user_id: str, payload: Mapping[str, Any]) -> bool:
        log.info("notification -> %s : %s", user_id, payload.get("title"), extra={"user_id": user_id})
        return True


def build_sink() -> NotificationSink:
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotificationSink(settings.NOTIFY_WEBHOOK_URL)
    return LogNotificationSink()
