# server/fleet/workers/tasks/outbox_tasks.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional

import pydantic
from celery.utils.log import get_task_logger

from fleet.core.config import settings
from fleet.workers.celery_app import celery
from fleet.application.services.event_type_catalog import EventTypeCatalog
from fleet.application.services.notification_service import NotificationPayload, NotificationSink, build_sink
from fleet.infrastructure.messaging.events import EVENT_TYPE_USED, NOTIFICATION_REQUESTED
from fleet.infrastructure.messaging.outbox import Outbox
from fleet.infrastructure.persistence.database.session import open_session
from fleet.infrastructure.persistence.repositories.notification_repository import NotificationRepository
from fleet.infrastructure.persistence.repositories.outbox_repository import OutboxRepository

logger = get_task_logger(__name__)


class PermanentDeliveryError(Exception):
    """Intention inexploitable (payload invalide, type inconnu) : pas de retry."""


def _deliver_notification(s, event_id: str, raw: dict[str, Any], sink: NotificationSink) -> bool:
    try:
        payload = NotificationPayload.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise PermanentDeliveryError(f"invalid notification payload: {exc.errors()}") from exc

    ok = sink.notify(payload.user_id, payload.body())
    NotificationRepository(s).add_log(
        provider=getattr(sink, "name", type(sink).__name__),
        recipient=payload.user_id,
        status="success" if ok else "failed",
        message=payload.message,
        machine_id=payload.machine_id,
        alarm_id=payload.alarm_id,
        outbox_event_id=event_id,
        error_message=None if ok else "sink refused the notification",
        set_sent_at=ok,
    )
    return ok


def _deliver_event_type_usage(s, raw: dict[str, Any]) -> bool:
    type_id = raw.get("type_id")
    if not type_id:
        raise PermanentDeliveryError("event_type.used without type_id")
    count = int(raw.get("count") or 1)
    if not EventTypeCatalog(s).increment_usage(type_id, count):
        raise PermanentDeliveryError(f"unknown event type {type_id}")
    return True


def _deliver_one(s, event_id: str, type_: str, payload: dict[str, Any], sink: NotificationSink) -> bool:
    if type_ == NOTIFICATION_REQUESTED:
        return _deliver_notification(s, event_id, payload, sink)
    if type_ == EVENT_TYPE_USED:
        return _deliver_event_type_usage(s, payload)
    raise PermanentDeliveryError(f"unknown outbox event type {type_!r}")


def deliver_outbox_batch(limit: Optional[int] = None, *, sink: Optional[NotificationSink] = None) -> int:
    """
    Livre un batch d'évènements Outbox "dus" (next_attempt_at <= now) en 2 phases :

    Phase 1 (CLAIM) :
      - évènements PENDING dus → DELIVERING + attempts++ (commit), sous lease :
        next_attempt_at = now + OUTBOX_LEASE_SECONDS
      - un DELIVERING au lease expiré (worker mort avant la phase 2) est repris
      - on sort uniquement des PRIMITIVES (id, type, payload)

    Phase 2 (DELIVERY), une session par évènement :
      - OK                       -> DELIVERED
      - échec, tentatives < max  -> retry (backoff + jitter)
      - échec, tentatives >= max -> FAILED
      - intention inexploitable  -> FAILED directement

    Un échec de livraison ne touche jamais à la machine (le déclenchement reste acquis).
    Retour : nombre d'évènements marqués DELIVERED.
    """
    limit = limit or settings.OUTBOX_BATCH_SIZE
    sink = sink or build_sink()
    now = datetime.now(timezone.utc)

    # Phase 1 : claim
    claimed: list[dict[str, Any]] = []
    with open_session() as s:
        ob = Outbox(OutboxRepository(s))
        for ev in ob.due_events(limit=limit, as_of=now):
            attempts = ob.mark_delivering(ev.id, as_of=now)
            if not attempts:
                continue
            claimed.append({"id": ev.id, "type": ev.type, "payload": dict(ev.payload or {}), "attempts": attempts})
        s.commit()

    # Phase 2 : livraison
    delivered = 0
    for item in claimed:
        eid = item["id"]
        try:
            with open_session() as s:
                ob = Outbox(OutboxRepository(s))
                try:
                    ok = _deliver_one(s, eid, item["type"], item["payload"], sink)
                except PermanentDeliveryError as exc:
                    logger.error("outbox: dropping event_id=%s: %s", eid, exc)
                    ob.mark_failed(eid, str(exc))
                    s.commit()
                    continue

                if ok:
                    ob.mark_delivered(eid, receipt={"ok": True, "sink": getattr(sink, "name", None)})
                    delivered += 1
                elif item["attempts"] >= settings.OUTBOX_MAX_ATTEMPTS:
                    logger.warning("outbox: event_id=%s failed after %d attempts", eid, item["attempts"])
                    ob.mark_failed(eid, f"delivery failed after {item['attempts']} attempts")
                else:
                    ob.schedule_retry(eid, attempts_done=item["attempts"], reason="delivery failed")
                s.commit()
        except Exception:
            logger.exception("outbox: error while delivering event_id=%s", eid)
            # dernier recours : replanifier pour ne pas laisser l'évènement en DELIVERING
            try:
                with open_session() as s:
                    Outbox(OutboxRepository(s)).schedule_retry(
                        eid, attempts_done=item["attempts"], reason="unexpected delivery error"
                    )
                    s.commit()
            except Exception:
                logger.exception("outbox: failed to schedule retry for event_id=%s", eid)

    logger.info("outbox: delivered=%d claimed=%d", delivered, len(claimed))
    return delivered


@celery.task(name="outbox.deliver")
def deliver_outbox_batch_task(limit: Optional[int] = None) -> int:
    return deliver_outbox_batch(limit)
