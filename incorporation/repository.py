from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from .exceptions import ConcurrentModificationError, PersistenceError, RegistrationNotFound
from .models import Registration
from .ports import RegistrationRepository


def _check_version(registration_id: str, stored: dict[str, Any], expected_updated_at: datetime | None) -> None:
    if expected_updated_at is None:
        return
    current = Registration.model_validate(stored).updated_at
    if current != expected_updated_at:
        raise ConcurrentModificationError(
            f"Registration {registration_id} changed since it was fetched ({current} != {expected_updated_at})"
        )


def _stamp(registration_id: str, registration: Registration) -> dict[str, Any]:
    stamped = registration.model_copy(update={"id": registration_id, "updated_at": datetime.now(tz=timezone.utc)})
    return stamped.to_wire()


@dataclass
class InMemoryRegistrationStore:
    """Dict-backed store holding wire payloads, so reads never share objects with callers.

    With ``cache_mode`` the store upserts and keeps the caller's ``updatedAt``,
    which is what a fallback tier mirroring another store needs.
    """

    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    cache_mode: bool = False

    def add(self, registration: Registration) -> None:
        self.records[registration.id] = registration.to_wire()

    async def get(self, registration_id: str) -> Registration:
        payload = self.records.get(registration_id)
        if payload is None:
            raise RegistrationNotFound(registration_id)
        return Registration.model_validate(json.loads(json.dumps(payload)))

    async def update(
        self,
        registration_id: str,
        registration: Registration,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Registration:
        stored = self.records.get(registration_id)
        if stored is None:
            if not self.cache_mode:
                raise RegistrationNotFound(registration_id)
        else:
            _check_version(registration_id, stored, expected_updated_at)
        if self.cache_mode:
            self.records[registration_id] = registration.model_copy(update={"id": registration_id}).to_wire()
        else:
            self.records[registration_id] = _stamp(registration_id, registration)
        return await self.get(registration_id)


@dataclass
class JsonFileRegistrationStore:
    """Registrations cached in a single JSON file; used as the local fallback tier."""

    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read registration cache {self.path}: {exc}") from exc

    def _dump(self, records: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(records, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Cannot write registration cache {self.path}: {exc}") from exc

    async def get(self, registration_id: str) -> Registration:
        records = await asyncio.to_thread(self._load)
        payload = records.get(registration_id)
        if payload is None:
            raise RegistrationNotFound(registration_id)
        return Registration.model_validate(payload)

    async def update(
        self,
        registration_id: str,
        registration: Registration,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Registration:
        async with self._lock:
            records = await asyncio.to_thread(self._load)
            stored = records.get(registration_id)
            if stored is not None:
                _check_version(registration_id, stored, expected_updated_at)
            records[registration_id] = registration.model_copy(update={"id": registration_id}).to_wire()
            await asyncio.to_thread(self._dump, records)
        return Registration.model_validate(records[registration_id])


@dataclass
class FallbackRegistrationRepository:
    """Primary store with a local fallback tier.

    Reads go to the primary and are mirrored into the fallback; when the
    primary is unreachable the last mirrored copy is served instead.
    Writes only succeed if the primary accepts them.
    """

    primary: RegistrationRepository
    fallback: RegistrationRepository

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("registration_repository")

    async def get(self, registration_id: str) -> Registration:
        try:
            registration = await self.primary.get(registration_id)
        except RegistrationNotFound:
            raise
        except PersistenceError as exc:
            self._logger.warning("registration_primary_read_failed", registration_id=registration_id, error=str(exc))
            try:
                cached = await self.fallback.get(registration_id)
            except (RegistrationNotFound, PersistenceError):
                raise exc
            self._logger.info("registration_served_from_fallback", registration_id=registration_id)
            return cached
        await self._mirror(registration_id, registration)
        return registration

    async def update(
        self,
        registration_id: str,
        registration: Registration,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Registration:
        stored = await self.primary.update(registration_id, registration, expected_updated_at=expected_updated_at)
        await self._mirror(registration_id, stored)
        return stored

    async def _mirror(self, registration_id: str, registration: Registration) -> None:
        try:
            await self.fallback.update(registration_id, registration)
        except (RegistrationNotFound, PersistenceError) as exc:
            self._logger.warning("registration_fallback_mirror_failed", registration_id=registration_id, error=str(exc))
