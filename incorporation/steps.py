from __future__ import annotations

from dataclasses import dataclass

from .models import Registration, RegistrationStatus, StepState, WorkflowStep


@dataclass(frozen=True)
class StepRule:
    """One row of the ordered step table; ``requires_unapproved`` names a flag that must still be false."""

    statuses: frozenset[RegistrationStatus]
    step: WorkflowStep
    requires_unapproved: str | None = None

    def matches(self, status: RegistrationStatus | str, registration: Registration) -> bool:
        if status not in self.statuses:
            return False
        if self.requires_unapproved is None:
            return True
        return not getattr(registration, self.requires_unapproved)


DEFAULT_STEP_RULES: tuple[StepRule, ...] = (
    StepRule(
        frozenset({RegistrationStatus.PAYMENT_PROCESSING, RegistrationStatus.PAYMENT_REJECTED}),
        WorkflowStep.PAYMENT,
    ),
    StepRule(
        frozenset({RegistrationStatus.DOCUMENTATION_PROCESSING}),
        WorkflowStep.COMPANY_DETAILS,
        requires_unapproved="details_approved",
    ),
    StepRule(
        frozenset({RegistrationStatus.INCORPORATION_PROCESSING}),
        WorkflowStep.DOCUMENTATION,
        requires_unapproved="documents_approved",
    ),
    # Published documents still wait for the step 3 review; this must come before the step 4 row.
    StepRule(frozenset({RegistrationStatus.DOCUMENTS_PUBLISHED}), WorkflowStep.DOCUMENTATION),
    StepRule(
        frozenset(
            {
                RegistrationStatus.DOCUMENTS_SUBMITTED,
                RegistrationStatus.INCORPORATION_PROCESSING,
                RegistrationStatus.COMPLETED,
            }
        ),
        WorkflowStep.INCORPORATION,
    ),
)

# step -> gate flag that unlocks it
_GATES = {
    WorkflowStep.COMPANY_DETAILS: "payment_approved",
    WorkflowStep.DOCUMENTATION: "details_approved",
    WorkflowStep.INCORPORATION: "documents_approved",
}


def _normalise_status(status: RegistrationStatus | str) -> RegistrationStatus | str:
    if isinstance(status, RegistrationStatus):
        return status
    try:
        return RegistrationStatus(status)
    except ValueError:
        return status


@dataclass(frozen=True)
class StepResolver:
    rules: tuple[StepRule, ...] = DEFAULT_STEP_RULES
    default_step: WorkflowStep = WorkflowStep.PAYMENT

    def active_step(self, registration: Registration) -> WorkflowStep:
        status = _normalise_status(registration.status)
        for rule in self.rules:
            if rule.matches(status, registration):
                return rule.step
        return self.default_step

    def is_navigable(self, registration: Registration, step: WorkflowStep | int) -> bool:
        try:
            step = WorkflowStep(step)
        except ValueError:
            return False
        gate = gate_flag_for(step)
        if gate is None:
            return True
        return bool(getattr(registration, gate))

    def navigable_steps(self, registration: Registration) -> frozenset[WorkflowStep]:
        return frozenset(step for step in WorkflowStep if self.is_navigable(registration, step))

    def resolve(self, registration: Registration) -> StepState:
        return StepState(active_step=self.active_step(registration), navigable=self.navigable_steps(registration))

    def navigate(self, registration: Registration, current: WorkflowStep, target: WorkflowStep | int) -> WorkflowStep:
        """Move to ``target`` when its gate is open; otherwise stay on ``current``."""
        if not self.is_navigable(registration, target):
            return current
        return WorkflowStep(target)


def gate_flag_for(step: WorkflowStep) -> str | None:
    return _GATES.get(step)


def queue_bucket(registration: Registration) -> WorkflowStep | None:
    """Admin work-queue column for a registration.

    Unlike the active step this looks at what the admin still has to act on:
    a registration whose details were approved already sits in the step 3
    queue, and an approved document set moves it to step 4 regardless of
    status. The dashboard filters overlap (an incorporation-processing record
    with approved documents matches both the step 3 and step 4 filters); this
    reduces them to the single most advanced column. ``None`` means it belongs
    to no queue (unknown status).
    """
    status = _normalise_status(registration.status)
    if status in {RegistrationStatus.PAYMENT_PROCESSING, RegistrationStatus.PAYMENT_REJECTED}:
        return WorkflowStep.PAYMENT
    if status == RegistrationStatus.DOCUMENTATION_PROCESSING and not registration.details_approved:
        return WorkflowStep.COMPANY_DETAILS
    if status in {RegistrationStatus.DOCUMENTS_SUBMITTED, RegistrationStatus.COMPLETED} or registration.documents_approved:
        return WorkflowStep.INCORPORATION
    if status in {
        RegistrationStatus.INCORPORATION_PROCESSING,
        RegistrationStatus.DOCUMENTS_PUBLISHED,
        RegistrationStatus.DOCUMENTATION_PROCESSING,
    }:
        return WorkflowStep.DOCUMENTATION
    return None


default_resolver = StepResolver()
