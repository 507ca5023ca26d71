from .approvals import GateApprovals
from .dispatch import NotificationDispatcher
from .events import RegistrationEvent, RegistrationEventBus, RegistrationEventType
from .exceptions import (
    ConcurrentModificationError,
    DocumentRejected,
    GateLockedError,
    InvalidSlotError,
    PersistenceError,
    RegistrationNotFound,
    StorageError,
)
from .models import Director, Document, Registration, RegistrationStatus, StepState, WorkflowStep
from .pending import PendingDocumentSet, PendingDocumentStore
from .ports import BlobStorage, Notifier, RegistrationRepository, UploadedBlob
from .publisher import DocumentPublisher, InFlightGuard, PublishError, PublishErrorKind, PublishOutcome
from .repository import FallbackRegistrationRepository, InMemoryRegistrationStore, JsonFileRegistrationStore
from .settings import WorkflowSettings
from .slots import DocumentSlot, Form18Slot, SequenceSlot, SingleSlot, parse_slot
from .steps import StepResolver, default_resolver, queue_bucket

__all__ = [
    "GateApprovals",
    "NotificationDispatcher",
    "RegistrationEvent",
    "RegistrationEventBus",
    "RegistrationEventType",
    "ConcurrentModificationError",
    "DocumentRejected",
    "GateLockedError",
    "InvalidSlotError",
    "PersistenceError",
    "RegistrationNotFound",
    "StorageError",
    "Director",
    "Document",
    "Registration",
    "RegistrationStatus",
    "StepState",
    "WorkflowStep",
    "PendingDocumentSet",
    "PendingDocumentStore",
    "BlobStorage",
    "Notifier",
    "RegistrationRepository",
    "UploadedBlob",
    "DocumentPublisher",
    "InFlightGuard",
    "PublishError",
    "PublishErrorKind",
    "PublishOutcome",
    "FallbackRegistrationRepository",
    "InMemoryRegistrationStore",
    "JsonFileRegistrationStore",
    "WorkflowSettings",
    "DocumentSlot",
    "Form18Slot",
    "SequenceSlot",
    "SingleSlot",
    "parse_slot",
    "StepResolver",
    "default_resolver",
    "queue_bucket",
]
