from __future__ import annotations
"""server/fleet/infrastructure/notifications/providers/webhook_provider.py
~~~~~~~~~~~~~~~~~~~~~~~~
WebhookNotificationSink : POST JSON d'une notification vers un endpoint HTTP.
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from fleet.core.config import settings

log = logging.getLogger(__name__)


class WebhookNotificationSink:
    name = "webhook"

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url or settings.NOTIFY_WEBHOOK_URL
        if not self.url:
            raise ValueError("Notification webhook URL must be provided")
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT_SECONDS
        self._client = client

    def notify(self, user_id: str, payload: Mapping[str, Any]) -> bool:
        """
        Envoie `{"user_id": ..., **payload}`. True si le serveur répond 2xx.
        Une erreur transport est journalisée et retournée comme échec (le worker
        reprogramme la livraison).
        """
        body = {"user_id": user_id, **payload}
        try:
            if self._client is not None:
                r = self._client.post(self.url, json=body, timeout=self.timeout)
            else:
                r = httpx.post(self.url, json=body, timeout=self.timeout)
        except httpx.HTTPError as exc:
            log.warning("webhook send failed: %s", exc, extra={"user_id": user_id})
            return False
        if not r.is_success:
            log.warning("webhook answered HTTP %s", r.status_code, extra={"user_id": user_id})
        return r.is_success
