import asyncio
import json
from datetime import datetime, timezone

import pytest

from incorporation.exceptions import ConcurrentModificationError, PersistenceError, RegistrationNotFound
from incorporation.models import Registration
from incorporation.repository import (
    FallbackRegistrationRepository,
    InMemoryRegistrationStore,
    JsonFileRegistrationStore,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DownStore:
    """Primary that is unreachable for reads and writes."""

    async def get(self, registration_id):
        raise PersistenceError("connection refused")

    async def update(self, registration_id, registration, *, expected_updated_at=None):
        raise PersistenceError("connection refused")


def _registration(**overrides) -> Registration:
    payload = {"_id": "reg-1", "status": "payment-processing", "updatedAt": T0.isoformat(), "legacyColumn": 7}
    payload.update(overrides)
    return Registration.model_validate(payload)


def test_in_memory_store_returns_copies_and_stamps_updates():
    store = InMemoryRegistrationStore()
    store.add(_registration())

    first = asyncio.run(store.get("reg-1"))
    first.payment_approved = True
    assert asyncio.run(store.get("reg-1")).payment_approved is False

    stored = asyncio.run(store.update("reg-1", first))
    assert stored.payment_approved is True
    assert stored.updated_at > T0
    assert stored.to_wire()["legacyColumn"] == 7


def test_in_memory_store_update_of_missing_record():
    with pytest.raises(RegistrationNotFound):
        asyncio.run(InMemoryRegistrationStore().update("reg-1", _registration()))


def test_in_memory_store_version_check():
    store = InMemoryRegistrationStore()
    store.add(_registration())

    with pytest.raises(ConcurrentModificationError):
        asyncio.run(store.update("reg-1", _registration(), expected_updated_at=datetime(2023, 1, 1, tzinfo=timezone.utc)))
    asyncio.run(store.update("reg-1", _registration(), expected_updated_at=T0))


def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "cache" / "registrations.json"
    store = JsonFileRegistrationStore(path)

    with pytest.raises(RegistrationNotFound):
        asyncio.run(store.get("reg-1"))

    asyncio.run(store.update("reg-1", _registration(detailsApproved=True)))

    assert json.loads(path.read_text(encoding="utf-8"))["reg-1"]["detailsApproved"] is True
    loaded = asyncio.run(JsonFileRegistrationStore(path).get("reg-1"))
    assert loaded.details_approved is True
    assert loaded.updated_at == T0


def test_json_file_store_corrupt_file(tmp_path):
    path = tmp_path / "registrations.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        asyncio.run(JsonFileRegistrationStore(path).get("reg-1"))


def test_fallback_mirrors_reads_and_serves_them_when_primary_is_down():
    primary = InMemoryRegistrationStore()
    primary.add(_registration(paymentApproved=True))
    fallback = InMemoryRegistrationStore(cache_mode=True)
    repo = FallbackRegistrationRepository(primary, fallback)

    asyncio.run(repo.get("reg-1"))
    assert "reg-1" in fallback.records

    offline = FallbackRegistrationRepository(DownStore(), fallback)
    cached = asyncio.run(offline.get("reg-1"))
    assert cached.payment_approved is True


def test_fallback_does_not_mask_missing_records_or_failed_writes():
    fallback = InMemoryRegistrationStore(cache_mode=True)
    fallback.add(_registration())
    repo = FallbackRegistrationRepository(InMemoryRegistrationStore(), fallback)

    with pytest.raises(RegistrationNotFound):
        asyncio.run(repo.get("reg-1"))

    offline = FallbackRegistrationRepository(DownStore(), fallback)
    with pytest.raises(PersistenceError):
        asyncio.run(offline.update("reg-1", _registration()))
    with pytest.raises(PersistenceError):
        asyncio.run(offline.get("other"))


def test_fallback_mirrors_writes(tmp_path):
    primary = InMemoryRegistrationStore()
    primary.add(_registration())
    fallback = JsonFileRegistrationStore(tmp_path / "registrations.json")
    repo = FallbackRegistrationRepository(primary, fallback)

    stored = asyncio.run(repo.update("reg-1", _registration(detailsApproved=True)))

    mirrored = asyncio.run(fallback.get("reg-1"))
    assert mirrored.details_approved is True
    assert mirrored.updated_at == stored.updated_at
