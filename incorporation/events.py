from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

import structlog

from .models import Registration


class RegistrationEventType(str, Enum):
    PAYMENT_APPROVED = "payment-approved"
    PAYMENT_REJECTED = "payment-rejected"
    DETAILS_APPROVED = "details-approved"
    DOCUMENTS_APPROVED = "documents-approved"
    DOCUMENTS_PUBLISHED = "documents-published"
    DOCUMENT_REMOVED = "document-removed"
    REGISTRATION_COMPLETED = "registration-completed"


@dataclass(frozen=True)
class RegistrationEvent:
    type: RegistrationEventType
    registration: Registration
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[RegistrationEvent], None]


@dataclass
class RegistrationEventBus:
    """Explicit observer list handed to the workflow services instead of an ambient event bus."""

    _subscribers: list[Subscriber] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("registration_events")

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            self.unsubscribe(subscriber)

        return _unsubscribe

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(self, event_type: RegistrationEventType, registration: Registration) -> RegistrationEvent:
        event = RegistrationEvent(type=event_type, registration=registration)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "registration_event_subscriber_failed",
                    event_type=event_type.value,
                    registration_id=registration.id,
                    error=str(exc),
                )
        return event
