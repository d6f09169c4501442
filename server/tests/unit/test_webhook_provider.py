# server/tests/unit/test_webhook_provider.py
import json

import httpx
import pytest

from fleet.application.services.notification_service import LogNotificationSink, build_sink
from fleet.core.config import settings
from fleet.infrastructure.notifications.providers.webhook_provider import WebhookNotificationSink

pytestmark = pytest.mark.unit

URL = "https://hooks.example.test/fleet"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_posts_json_with_recipient():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(204)

    sink = WebhookNotificationSink(URL, client=_client(handler))
    assert sink.notify("user-1", {"title": "Maintenance due: Oil", "machine_id": "m1"}) is True
    assert seen == [(URL, {"user_id": "user-1", "title": "Maintenance due: Oil", "machine_id": "m1"})]


def test_server_error_is_a_failed_send():
    sink = WebhookNotificationSink(URL, client=_client(lambda request: httpx.Response(503)))
    assert sink.notify("user-1", {"title": "x"}) is False


def test_transport_error_is_a_failed_send():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    sink = WebhookNotificationSink(URL, client=_client(handler))
    assert sink.notify("user-1", {"title": "x"}) is False


def test_url_is_required(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", None)
    with pytest.raises(ValueError):
        WebhookNotificationSink()


def test_build_sink_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", None)
    assert isinstance(build_sink(), LogNotificationSink)
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", URL)
    sink = build_sink()
    assert isinstance(sink, WebhookNotificationSink)
    assert sink.url == URL
