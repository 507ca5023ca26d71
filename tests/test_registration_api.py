import asyncio
import json
from collections import deque
from datetime import datetime, timezone

import httpx
import pytest

from connectors.registration_api import RegistrationApiClient
from incorporation.exceptions import ConcurrentModificationError, PersistenceError, RegistrationNotFound
from incorporation.models import Registration

ROW = {
    "_id": "reg-1",
    "status": "documentation-processing",
    "paymentApproved": 1,
    "detailsApproved": None,
    "directors": None,
    "form18": [None],
    "companyNameEnglish": "Acme Ltd",
    "updatedAt": "2024-01-01T00:00:00Z",
    "legacyColumn": "keep me",
}


def _client(handler, **kwargs) -> RegistrationApiClient:
    return RegistrationApiClient(
        "https://portal.example/",
        transport=httpx.MockTransport(handler),
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        **kwargs,
    )


def test_get_parses_portal_row():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json=ROW)

    client = _client(handler)
    registration = asyncio.run(client.get("reg-1"))
    asyncio.run(client.aclose())

    assert seen["url"] == "https://portal.example/api/registrations/reg-1"
    assert registration.id == "reg-1"
    assert registration.payment_approved is True
    assert registration.details_approved is False
    assert registration.directors == []
    assert registration.form18 == [None]


def test_get_not_found():
    client = _client(lambda request: httpx.Response(404, json={"error": "Registration not found"}))

    with pytest.raises(RegistrationNotFound):
        asyncio.run(client.get("reg-1"))


def test_retries_server_errors_then_succeeds():
    responses = deque(
        [
            httpx.Response(503, json={"error": "busy"}),
            httpx.Response(429, headers={"Retry-After": "0"}, json={"error": "slow down"}),
            httpx.Response(200, json=ROW),
        ]
    )
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return responses.popleft()

    registration = asyncio.run(_client(handler).get("reg-1"))

    assert registration.company_name_english == "Acme Ltd"
    assert calls == ["GET", "GET", "GET"]


def test_network_errors_exhaust_retries():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PersistenceError):
        asyncio.run(_client(handler, max_retries=2).get("reg-1"))
    assert len(attempts) == 3


def test_client_errors_are_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(400, json={"error": "bad"})

    with pytest.raises(PersistenceError):
        asyncio.run(_client(handler).get("reg-1"))
    assert len(attempts) == 1


def test_update_puts_full_record_and_reads_it_back():
    stored = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            stored.update(json.loads(request.content))
            stored["updatedAt"] = "2024-02-01T00:00:00Z"
            return httpx.Response(200, json={"success": True, "message": "Registration updated successfully"})
        return httpx.Response(200, json=stored)

    registration = Registration.model_validate(ROW)
    registration.details_approved = True

    result = asyncio.run(_client(handler).update("reg-1", registration))

    assert stored["detailsApproved"] is True
    assert stored["legacyColumn"] == "keep me"
    assert stored["_id"] == "reg-1"
    assert result.details_approved is True
    assert result.updated_at == datetime(2024, 2, 1, tzinfo=timezone.utc)


def test_update_succeeds_when_read_back_fails():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if request.method == "PUT":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(503, json={"error": "busy"})

    registration = Registration.model_validate(ROW)
    registration.status = "documents-published"
    registration.documents_published = True

    result = asyncio.run(_client(handler, max_retries=1).update("reg-1", registration))

    assert calls == ["PUT", "GET", "GET"]
    assert result.id == "reg-1"
    assert result.documents_published is True
    assert result.to_wire()["legacyColumn"] == "keep me"


def test_update_sends_expected_version_and_maps_conflict():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["if_match"] = request.headers.get("If-Match")
        return httpx.Response(412, json={"error": "stale"})

    registration = Registration.model_validate(ROW)

    with pytest.raises(ConcurrentModificationError):
        asyncio.run(_client(handler).update("reg-1", registration, expected_updated_at=registration.updated_at))
    assert seen["if_match"] == "2024-01-01T00:00:00+00:00"


def test_invalid_json_is_a_persistence_error():
    client = _client(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(PersistenceError):
        asyncio.run(client.get("reg-1"))
