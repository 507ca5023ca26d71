import asyncio

import pytest

from incorporation.approvals import GateApprovals
from incorporation.dispatch import NotificationDispatcher
from incorporation.events import RegistrationEventBus, RegistrationEventType
from incorporation.exceptions import GateLockedError, RegistrationNotFound
from incorporation.models import Registration, RegistrationStatus
from incorporation.repository import InMemoryRegistrationStore


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, event, payload):
        self.sent.append((event, payload["registrationId"]))


def _approvals(**record):
    payload = {"_id": "reg-1", "status": "payment-processing", "companyNameEnglish": "Acme Ltd"}
    payload.update(record)
    store = InMemoryRegistrationStore()
    store.add(Registration.model_validate(payload))
    notifier = RecordingNotifier()
    events = RegistrationEventBus()
    approvals = GateApprovals(repository=store, events=events, notifications=NotificationDispatcher(notifier))
    return approvals, store, notifier, events


def _run(approvals, action, registration_id="reg-1"):
    async def _go():
        result = await getattr(approvals, action)(registration_id)
        await approvals.notifications.drain()
        return result

    return asyncio.run(_go())


def test_approve_payment_opens_step_two_and_notifies():
    approvals, store, notifier, events = _approvals(status="payment-rejected")
    seen = []
    events.subscribe(lambda event: seen.append(event.type))

    stored = _run(approvals, "approve_payment")

    assert stored.payment_approved is True
    assert stored.status == RegistrationStatus.PAYMENT_PROCESSING
    assert stored.current_step == "company-details"
    assert asyncio.run(store.get("reg-1")).payment_approved is True
    assert notifier.sent == [("payment-approval", "reg-1")]
    assert seen == [RegistrationEventType.PAYMENT_APPROVED]


def test_reject_payment_closes_gate_without_client_notification():
    approvals, _, notifier, _ = _approvals(paymentApproved=True)

    stored = _run(approvals, "reject_payment")

    assert stored.payment_approved is False
    assert stored.status == RegistrationStatus.PAYMENT_REJECTED
    assert stored.current_step == "contact-details"
    assert notifier.sent == []


def test_approve_details_requires_payment_approval():
    approvals, store, notifier, _ = _approvals(status="documentation-processing")

    with pytest.raises(GateLockedError):
        _run(approvals, "approve_details")

    assert asyncio.run(store.get("reg-1")).details_approved is False
    assert notifier.sent == []


def test_approve_details_and_documents_in_order():
    approvals, _, notifier, _ = _approvals(status="documentation-processing", paymentApproved=True)

    details = _run(approvals, "approve_details")
    documents = _run(approvals, "approve_documents")

    assert details.details_approved is True
    assert details.current_step == "documentation"
    assert documents.documents_approved is True
    assert documents.current_step == "incorporate"
    assert notifier.sent == []


def test_approve_documents_requires_details_approval():
    approvals, _, _, _ = _approvals(status="incorporation-processing", paymentApproved=True)

    with pytest.raises(GateLockedError) as excinfo:
        _run(approvals, "approve_documents")
    assert "details_approved is not set" in str(excinfo.value)


def test_unknown_registration():
    approvals, _, _, _ = _approvals()

    with pytest.raises(RegistrationNotFound):
        _run(approvals, "approve_payment", registration_id="nope")
