from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import Any

import httpx
import structlog

from incorporation.exceptions import ConcurrentModificationError, PersistenceError, RegistrationNotFound
from incorporation.models import Registration


class RegistrationApiClient:
    """Persistence service adapter for the portal's ``/api/registrations/{id}`` endpoints.

    GET and PUT are both safe to repeat (PUT replaces the whole record), so
    rate limits, 5xx answers and transport errors are retried with backoff.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 0.2,
        backoff_max_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._backoff_base_seconds = backoff_base_seconds
        self._backoff_max_seconds = backoff_max_seconds
        self._logger = structlog.get_logger("registration_api")
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, registration_id: str) -> Registration:
        payload = await self._call(
            method="GET",
            registration_id=registration_id,
            operation="get_registration",
        )
        return self._parse(registration_id, payload)

    async def update(
        self,
        registration_id: str,
        registration: Registration,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Registration:
        body = registration.model_copy(update={"id": registration_id}).to_wire()
        headers: dict[str, str] = {}
        if expected_updated_at is not None:
            headers["If-Match"] = expected_updated_at.isoformat()
        payload = await self._call(
            method="PUT",
            registration_id=registration_id,
            operation="update_registration",
            json=body,
            headers=headers,
        )
        # The portal answers PUT with {"success": true}; read the stored record back.
        if "_id" in payload or "id" in payload:
            return self._parse(registration_id, payload)
        try:
            return await self.get(registration_id)
        except PersistenceError as exc:
            # the PUT is committed; a failed read-back is not a failed write
            self._logger.warning(
                "registration_api_read_back_failed",
                registration_id=registration_id,
                error=str(exc),
            )
            return Registration.model_validate(body)

    async def _call(
        self,
        *,
        method: str,
        registration_id: str,
        operation: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/api/registrations/{registration_id}"
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(method, url, json=json, headers=headers)
            except httpx.HTTPError as exc:
                if attempt >= self._max_retries:
                    raise PersistenceError(f"{operation} failed for {registration_id}: {exc}") from exc
                await self._sleep_before_retry(attempt, retry_after=None)
                self._logger.warning(
                    "registration_api_retry_network_error",
                    error=str(exc),
                    attempt=attempt + 1,
                    operation=operation,
                    registration_id=registration_id,
                )
                continue

            if resp.status_code == 404:
                raise RegistrationNotFound(registration_id)
            if resp.status_code in {409, 412}:
                raise ConcurrentModificationError(f"Registration {registration_id} was modified concurrently")

            if resp.status_code == 429 or 500 <= resp.status_code <= 599:
                if attempt >= self._max_retries:
                    raise PersistenceError(f"{operation} failed for {registration_id}: HTTP {resp.status_code}")
                retry_after = self._parse_retry_after(resp.headers.get("Retry-After"))
                await self._sleep_before_retry(attempt, retry_after=retry_after)
                self._logger.warning(
                    "registration_api_retry_status",
                    attempt=attempt + 1,
                    operation=operation,
                    registration_id=registration_id,
                    status_code=resp.status_code,
                    retry_after_seconds=retry_after,
                )
                continue

            if resp.status_code >= 400:
                raise PersistenceError(f"{operation} failed for {registration_id}: HTTP {resp.status_code}")

            try:
                payload = resp.json()
            except ValueError as exc:
                raise PersistenceError(f"{operation} returned invalid JSON for {registration_id}") from exc
            if not isinstance(payload, dict):
                raise PersistenceError(f"{operation} returned unexpected payload for {registration_id}")
            if "error" in payload:
                raise PersistenceError(f"{operation} failed for {registration_id}: {payload['error']}")

            self._logger.info(
                "registration_api_request_success",
                operation=operation,
                registration_id=registration_id,
                attempt=attempt + 1,
            )
            return payload

        raise RuntimeError("Unreachable retry loop end")

    @staticmethod
    def _parse(registration_id: str, payload: dict[str, Any]) -> Registration:
        try:
            return Registration.model_validate(payload)
        except ValueError as exc:
            raise PersistenceError(f"Malformed registration {registration_id}: {exc}") from exc

    async def _sleep_before_retry(self, attempt: int, *, retry_after: float | None) -> None:
        if retry_after is not None:
            await asyncio.sleep(max(0.0, retry_after))
            return
        base = min(self._backoff_max_seconds, self._backoff_base_seconds * (2**attempt))
        jitter = random.uniform(0.0, base / 4 if base > 0 else 0.001)
        await asyncio.sleep(min(self._backoff_max_seconds, base + jitter))

    @staticmethod
    def _parse_retry_after(value: str | None) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None
