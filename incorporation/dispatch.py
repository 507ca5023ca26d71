from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from .models import Registration
from .ports import Notifier


def notification_payload(registration: Registration) -> dict[str, Any]:
    status = registration.status
    return {
        "registrationId": registration.id,
        "companyName": registration.company_name_english,
        "contactPersonName": registration.contact_person_name,
        "contactPersonEmail": registration.contact_person_email,
        "status": getattr(status, "value", status),
    }


@dataclass
class NotificationDispatcher:
    """Fire-and-forget delivery: callers never wait on, or fail because of, a notification."""

    notifier: Notifier | None = None
    enabled: bool = True
    _tasks: set[asyncio.Task[None]] = field(default_factory=set)

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("notification_dispatcher")

    def dispatch(self, event: str, registration: Registration) -> None:
        if self.notifier is None or not self.enabled:
            return
        task = asyncio.get_running_loop().create_task(self._deliver(event, notification_payload(registration)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for notifications still in flight (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        assert self.notifier is not None
        try:
            await self.notifier.notify(event, payload)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "notification_failed",
                notification=event,
                registration_id=payload.get("registrationId"),
                error=str(exc),
            )
            return
        self._logger.info("notification_sent", notification=event, registration_id=payload.get("registrationId"))
