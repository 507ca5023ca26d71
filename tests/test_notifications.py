import asyncio
import json

import httpx
import pytest

from connectors.notifications import HttpNotifier, NotificationError


def test_notify_posts_payload_to_event_endpoint():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True})

    notifier = HttpNotifier("https://portal.example/", transport=httpx.MockTransport(handler))
    asyncio.run(notifier.notify("payment-approval", {"registrationId": "reg-1", "companyName": "Acme Ltd"}))
    asyncio.run(notifier.aclose())

    assert captured["path"] == "/api/notifications/payment-approval"
    assert captured["body"] == {"registrationId": "reg-1", "companyName": "Acme Ltd"}


def test_notify_raises_on_error_status():
    notifier = HttpNotifier("https://portal.example", transport=httpx.MockTransport(lambda r: httpx.Response(500)))

    with pytest.raises(NotificationError):
        asyncio.run(notifier.notify("documents-published", {"registrationId": "reg-1"}))
