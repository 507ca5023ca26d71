from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import structlog

from . import metrics
from .dispatch import NotificationDispatcher
from .events import RegistrationEventBus, RegistrationEventType
from .exceptions import GateLockedError
from .models import Registration, RegistrationStatus, WorkflowStep
from .ports import RegistrationRepository
from .settings import WorkflowSettings
from .steps import StepResolver, default_resolver, gate_flag_for

# Decisions without an entry have no client-facing endpoint on the portal.
NOTIFICATION_FOR_EVENT = {
    RegistrationEventType.PAYMENT_APPROVED: "payment-approval",
}


@dataclass
class GateApprovals:
    """Admin decisions that open (or close) the gate in front of each step."""

    repository: RegistrationRepository
    resolver: StepResolver = default_resolver
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    events: RegistrationEventBus = field(default_factory=RegistrationEventBus)
    notifications: NotificationDispatcher = field(default_factory=NotificationDispatcher)

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("gate_approvals")

    async def approve_payment(self, registration_id: str) -> Registration:
        def _mutate(registration: Registration) -> None:
            registration.payment_approved = True
            if registration.status == RegistrationStatus.PAYMENT_REJECTED:
                registration.status = RegistrationStatus.PAYMENT_PROCESSING
            registration.current_step = WorkflowStep.COMPANY_DETAILS.key

        return await self._apply(registration_id, WorkflowStep.PAYMENT, _mutate, RegistrationEventType.PAYMENT_APPROVED)

    async def reject_payment(self, registration_id: str) -> Registration:
        def _mutate(registration: Registration) -> None:
            registration.payment_approved = False
            registration.status = RegistrationStatus.PAYMENT_REJECTED
            registration.current_step = WorkflowStep.PAYMENT.key

        return await self._apply(registration_id, WorkflowStep.PAYMENT, _mutate, RegistrationEventType.PAYMENT_REJECTED)

    async def approve_details(self, registration_id: str) -> Registration:
        def _mutate(registration: Registration) -> None:
            registration.details_approved = True
            registration.current_step = WorkflowStep.DOCUMENTATION.key

        return await self._apply(
            registration_id, WorkflowStep.COMPANY_DETAILS, _mutate, RegistrationEventType.DETAILS_APPROVED
        )

    async def approve_documents(self, registration_id: str) -> Registration:
        def _mutate(registration: Registration) -> None:
            registration.documents_approved = True
            registration.current_step = WorkflowStep.INCORPORATION.key

        return await self._apply(
            registration_id, WorkflowStep.DOCUMENTATION, _mutate, RegistrationEventType.DOCUMENTS_APPROVED
        )

    async def _apply(
        self,
        registration_id: str,
        reviewed_step: WorkflowStep,
        mutate: Callable[[Registration], None],
        event: RegistrationEventType,
    ) -> Registration:
        registration = await self.repository.get(registration_id)
        if not self.resolver.is_navigable(registration, reviewed_step):
            raise GateLockedError(
                f"Cannot apply {event.value}: step {int(reviewed_step)} is locked for registration {registration_id}"
                f" ({gate_flag_for(reviewed_step)} is not set)"
            )
        working = registration.model_copy(deep=True)
        mutate(working)
        stored = await self.repository.update(
            registration_id,
            working,
            expected_updated_at=registration.updated_at if self.settings.optimistic_concurrency else None,
        )
        metrics.inc("approval.applied")
        self._logger.info("gate_decision_applied", registration_id=registration_id, decision=event.value)
        self.events.emit(event, stored)
        notification = NOTIFICATION_FOR_EVENT.get(event)
        if notification is not None:
            self.notifications.dispatch(notification, stored)
        return stored
