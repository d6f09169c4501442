from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/__init__.py
~~~~~~~~~~~~~~~~~~~~~~~~
Modèles ORM (enregistrés sur Base.metadata).
"""

from .machine import MachineDocument
from .event_type import EventType
from .outbox_event import OutboxEvent, OutboxStatus
from .notification_log import NotificationLog

__all__ = ["MachineDocument", "EventType", "OutboxEvent", "OutboxStatus", "NotificationLog"]
