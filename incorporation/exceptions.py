class RegistrationNotFound(Exception):
    """Raised when the persistence service has no registration with the given id."""


class PersistenceError(Exception):
    """Raised when the persistence service cannot read or write a registration."""


class ConcurrentModificationError(PersistenceError):
    """Raised when the stored record changed since it was fetched."""


class StorageError(Exception):
    """Raised when blob storage rejects an upload or delete."""


class GateLockedError(Exception):
    """Raised when an action targets a step whose gate is not yet open."""


class InvalidSlotError(ValueError):
    """Raised when a document slot key cannot be resolved."""


class DocumentRejected(ValueError):
    """Raised when a pending document fails type or size validation."""


class PublishFailure(Exception):
    """Base for failures raised inside a publish or completion run."""


class UploadFailed(PublishFailure):
    def __init__(self, slot: str, reason: str) -> None:
        self.slot = slot
        self.reason = reason
        super().__init__(f"upload failed for {slot}: {reason}")


class IncompleteForm18(PublishFailure):
    def __init__(self, expected: int, present: int) -> None:
        self.expected = expected
        self.present = present
        super().__init__(f"form18 incomplete: {present} of {expected} directors covered")


class FetchFailed(PublishFailure):
    """Raised when the latest registration cannot be fetched before merging."""


class PersistFailed(PublishFailure):
    """Raised when the merged registration cannot be written back."""


class PublishInProgress(PublishFailure):
    """Raised when another publish for the same registration is still running."""


class CertificateMissing(PublishFailure):
    """Raised when completion is attempted without an incorporation certificate."""


class StepNotApproved(PublishFailure, GateLockedError):
    """Raised when completion is attempted before the documents gate is approved."""
