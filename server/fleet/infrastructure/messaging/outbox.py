# server/fleet/infrastructure/messaging/outbox.py
from __future__ import annotations
"""
Service Outbox : API haut-niveau au-dessus du repository
- publish() : écrit une intention (même transaction que l'appelant)
- due_events() : sélection des évènements "dûs" à livrer (lease expiré inclus)
- mark_delivering() / mark_delivered() / schedule_retry() / mark_failed()

Les backoffs sont lus depuis les settings (liste ou CSV "30,120,600").
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
import logging
import math
import random

from fleet.core.config import settings
from fleet.infrastructure.messaging.events import EventTypeUsed, NotificationRequested
from fleet.infrastructure.persistence.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)

_DEFAULT_BACKOFFS = [30, 120, 600]


# ──────────────────────────────────────────────────────────────────────────────
# Helpers backoff + jitter
# ──────────────────────────────────────────────────────────────────────────────

def _parse_backoffs(raw: Any = None) -> list[int]:
    """
    Accepte une liste d'entiers ou un CSV ("30,120,600").
    Fallback par défaut : [30, 120, 600]
    """
    raw = raw if raw is not None else settings.OUTBOX_BACKOFFS
    if isinstance(raw, (list, tuple)):
        try:
            return [int(x) for x in raw] or list(_DEFAULT_BACKOFFS)
        except (TypeError, ValueError):
            return list(_DEFAULT_BACKOFFS)
    if not raw:
        return list(_DEFAULT_BACKOFFS)
    try:
        return [int(x.strip()) for x in str(raw).split(",") if x.strip()] or list(_DEFAULT_BACKOFFS)
    except ValueError:
        logger.warning("invalid OUTBOX_BACKOFFS=%r, using defaults", raw)
        return list(_DEFAULT_BACKOFFS)


def _jitter(seconds: int, pct: float) -> int:
    """Applique un jitter symétrique ±pct, borne à [0..0.9]."""
    pct = max(0.0, min(float(pct), 0.9))
    low = seconds * (1.0 - pct)
    high = seconds * (1.0 + pct)
    return int(math.ceil(random.uniform(low, high)))


# ──────────────────────────────────────────────────────────────────────────────
# Service Outbox
# ──────────────────────────────────────────────────────────────────────────────

class Outbox:
    def __init__(self, repo: OutboxRepository):
        self.repo = repo
        self._backoffs: list[int] = _parse_backoffs()
        self._jitter_pct: float = float(settings.OUTBOX_JITTER_PCT)

    # --- Écriture -------------------------------------------------------------

    def publish(self, intent: NotificationRequested | EventTypeUsed, *, machine_id: str | None = None):
        """Écrit l'intention ; aucun commit ici."""
        return self.repo.insert(
            type_=intent.TYPE,
            payload=intent.to_payload(),
            machine_id=machine_id or getattr(intent, "machine_id", None),
        )

    def save_event(
        self,
        *,
        type_: str,
        payload: Mapping[str, Any],
        machine_id: str | None = None,
        next_attempt_at: datetime | None = None,
    ):
        """Crée un évènement outbox brut."""
        return self.repo.insert(
            type_=type_,
            payload=dict(payload),
            machine_id=machine_id,
            next_attempt_at=next_attempt_at,
        )

    # --- Lecture --------------------------------------------------------------

    def due_events(self, *, limit: int = 100, as_of: datetime | None = None):
        """PENDING dus + DELIVERING dont le lease a expiré (worker mort après le claim)."""
        as_of = as_of or datetime.now(timezone.utc)
        return self.repo.fetch_due(limit=limit, as_of=as_of)

    # --- Transitions d'état ---------------------------------------------------

    def mark_delivering(self, event_id: str, *, as_of: datetime | None = None) -> int:
        """Claim sous lease (OUTBOX_LEASE_SECONDS) ; retourne la nouvelle valeur de attempts."""
        lease_until = (as_of or datetime.now(timezone.utc)) + timedelta(seconds=int(settings.OUTBOX_LEASE_SECONDS))
        return self.repo.mark_delivering(event_id, lease_until)

    def retry_delay(self, attempts_done: int) -> int:
        # index dans la grille (0 pour 1ère tentative, clamp à la fin)
        idx = min(max(attempts_done - 1, 0), len(self._backoffs) - 1)
        base = self._backoffs[idx] if self._backoffs else 30
        return _jitter(base, self._jitter_pct)

    def schedule_retry(self, event_id: str, *, attempts_done: int, reason: str | None = None) -> datetime:
        """
        Programme un retry avec backoff + jitter en fonction du nombre de tentatives déjà faites.
        attempts_done = valeur retournée par mark_delivering()
        """
        when = datetime.now(timezone.utc) + timedelta(seconds=self.retry_delay(attempts_done))
        self.repo.mark_retry(event_id, when, reason)
        return when

    def mark_delivered(self, event_id: str, receipt: Mapping[str, Any] | None = None):
        self.repo.mark_delivered(event_id, dict(receipt or {}))

    def mark_failed(self, event_id: str, reason: str):
        self.repo.mark_failed(event_id, reason)
