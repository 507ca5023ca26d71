from __future__ import annotations

from typing import Any

import httpx
import structlog


class NotificationError(Exception):
    pass


class HttpNotifier:
    """Posts workflow notifications to ``/api/notifications/{event}``; the portal sends the e-mails."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._logger = structlog.get_logger("notifier")
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        try:
            resp = await self._client.post(f"{self._base_url}/api/notifications/{event}", json=payload)
        except httpx.HTTPError as exc:
            raise NotificationError(f"{event} notification failed: {exc}") from exc
        if resp.status_code >= 400:
            raise NotificationError(f"{event} notification failed: HTTP {resp.status_code}")
        self._logger.debug("notification_posted", notification=event, status_code=resp.status_code)
