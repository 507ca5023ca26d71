from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

import structlog
from pydantic import BaseModel, Field

from . import metrics
from .dispatch import NotificationDispatcher
from .events import RegistrationEventBus, RegistrationEventType
from .exceptions import (
    CertificateMissing,
    FetchFailed,
    IncompleteForm18,
    InvalidSlotError,
    PersistenceError,
    PersistFailed,
    PublishFailure,
    PublishInProgress,
    RegistrationNotFound,
    StepNotApproved,
    StorageError,
    UploadFailed,
)
from .models import Document, Registration, RegistrationStatus, WorkflowStep
from .pending import PendingDocumentSet, PendingDocumentStore
from .ports import BlobStorage, RegistrationRepository
from .settings import WorkflowSettings
from .slots import (
    INCORPORATION_CERTIFICATE,
    PUBLISHED_SEQUENCES,
    PUBLISHED_SINGLE_SLOTS,
    STEP4_FINAL_ADDITIONAL,
    DocumentSlot,
    Form18Slot,
    SequenceSlot,
    SingleSlot,
)


class PublishErrorKind(str, Enum):
    UPLOAD_FAILED = "upload-failed"
    INCOMPLETE_FORM18 = "incomplete-form18"
    FETCH_FAILED = "fetch-failed"
    PERSIST_FAILED = "persist-failed"
    IN_PROGRESS = "publish-in-progress"
    GATE_LOCKED = "gate-locked"
    CERTIFICATE_MISSING = "certificate-missing"


class PublishError(BaseModel):
    kind: PublishErrorKind
    message: str
    slot: str | None = None


class PublishOutcome(BaseModel):
    registration: Registration | None = None
    error: PublishError | None = None
    orphaned_blobs: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class InFlightGuard:
    """Rejects a second publish for a registration while the first is still awaiting I/O."""

    _active: set[str] = field(default_factory=set)

    @contextmanager
    def hold(self, registration_id: str) -> Iterator[None]:
        if registration_id in self._active:
            raise PublishInProgress(f"Publish already running for registration {registration_id}")
        self._active.add(registration_id)
        metrics.gauge("publish.in_flight", len(self._active))
        try:
            yield
        finally:
            self._active.discard(registration_id)
            metrics.gauge("publish.in_flight", len(self._active))

    def is_active(self, registration_id: str) -> bool:
        return registration_id in self._active


@dataclass
class _MergeRun:
    registration_id: str
    storage: BlobStorage
    uploaded: list[Document] = field(default_factory=list)

    async def materialise(self, slot: DocumentSlot, document: Document) -> Document:
        """Upload a pending document's bytes, or pass through one already in storage."""
        if not document.has_payload:
            if document.is_stored:
                return document.model_copy()
            raise UploadFailed(slot.key, "document has neither content nor a storage location")
        try:
            blob = await self.storage.upload(
                document.content or b"",
                owner_id=self.registration_id,
                name=document.name,
                content_type=document.type,
            )
        except StorageError as exc:
            raise UploadFailed(slot.key, str(exc)) from exc
        metrics.inc("publish.upload")
        stored = document.model_copy(
            update={
                "url": blob.url,
                "file_path": blob.path,
                "id": blob.id,
                "uploaded_at": blob.uploaded_at,
                "size": document.size if document.size is not None else len(document.content or b""),
                "content": None,
            }
        )
        self.uploaded.append(stored)
        return stored

    def orphan_refs(self) -> list[str]:
        return [doc.file_path or doc.id or doc.url or doc.name for doc in self.uploaded]


@dataclass
class DocumentPublisher:
    repository: RegistrationRepository
    storage: BlobStorage
    pending_store: PendingDocumentStore
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    events: RegistrationEventBus = field(default_factory=RegistrationEventBus)
    notifications: NotificationDispatcher = field(default_factory=NotificationDispatcher)
    guard: InFlightGuard = field(default_factory=InFlightGuard)
    clock: Callable[[], datetime] = _utcnow

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("document_publisher")

    async def publish(
        self,
        registration_id: str,
        pending: PendingDocumentSet | None = None,
        current_record: Registration | None = None,
    ) -> PublishOutcome:
        """Upload pending documents, merge them into the latest record and mark it published."""
        live = pending if pending is not None else self.pending_store.for_registration(registration_id)
        pending = live.snapshot()
        run = _MergeRun(registration_id=registration_id, storage=self.storage)
        try:
            with self.guard.hold(registration_id):
                latest = await self._fetch(registration_id)
                if current_record is not None and len(current_record.directors) != len(latest.directors):
                    self._logger.warning(
                        "publish_director_count_changed",
                        registration_id=registration_id,
                        cached_directors=len(current_record.directors),
                        latest_directors=len(latest.directors),
                    )
                self._check_form18(latest, pending)

                working = latest.model_copy(deep=True)
                for slot in PUBLISHED_SINGLE_SLOTS:
                    await self._merge_single(run, working, pending, slot)
                await self._merge_form18(run, working, pending)
                for slot in PUBLISHED_SEQUENCES:
                    await self._merge_sequence(run, working, pending, slot)

                working.documents_published = True
                working.documents_published_at = self.clock()
                working.status = RegistrationStatus.DOCUMENTS_PUBLISHED
                stored = await self._persist(registration_id, working, latest)
        except PublishFailure as exc:
            return self._failed("publish", registration_id, exc, run)

        live.forget(pending)
        self.pending_store.prune(registration_id)
        self._succeeded("publish", stored, run, RegistrationEventType.DOCUMENTS_PUBLISHED, notification=None)
        return PublishOutcome(registration=stored)

    async def complete(self, registration_id: str, pending: PendingDocumentSet | None = None) -> PublishOutcome:
        """Attach the incorporation certificate and final documents, then mark the registration completed."""
        live = pending if pending is not None else self.pending_store.for_registration(registration_id)
        pending = live.snapshot()
        run = _MergeRun(registration_id=registration_id, storage=self.storage)
        try:
            with self.guard.hold(registration_id):
                latest = await self._fetch(registration_id)
                if not latest.documents_approved:
                    raise StepNotApproved(f"Documents for registration {registration_id} are not approved yet")

                working = latest.model_copy(deep=True)
                await self._merge_single(run, working, pending, INCORPORATION_CERTIFICATE)
                if self.settings.require_certificate_on_complete and working.incorporation_certificate is None:
                    raise CertificateMissing(f"Registration {registration_id} has no incorporation certificate")
                await self._merge_sequence(run, working, pending, STEP4_FINAL_ADDITIONAL)

                working.status = RegistrationStatus.COMPLETED
                working.current_step = WorkflowStep.INCORPORATION.key
                stored = await self._persist(registration_id, working, latest)
        except PublishFailure as exc:
            return self._failed("complete", registration_id, exc, run)

        live.forget(pending, WorkflowStep.INCORPORATION)
        self.pending_store.prune(registration_id)
        self._succeeded(
            "complete", stored, run, RegistrationEventType.REGISTRATION_COMPLETED, notification="registration-completed"
        )
        return PublishOutcome(registration=stored)

    async def remove_document(self, registration_id: str, slot: DocumentSlot) -> Registration:
        """Detach a persisted document from its slot and delete its blob."""
        registration = await self.repository.get(registration_id)
        working = registration.model_copy(deep=True)

        if isinstance(slot, SingleSlot):
            removed = getattr(working, slot.field)
            setattr(working, slot.field, None)
        elif isinstance(slot, Form18Slot):
            removed = working.form18[slot.index] if slot.index < len(working.form18) else None
            if removed is not None:
                working.form18[slot.index] = None
        else:
            if slot.index is None:
                raise InvalidSlotError(f"Removing from {slot.sequence.value} needs an index")
            documents = getattr(working, slot.field)
            removed = documents.pop(slot.index) if slot.index < len(documents) else None

        if removed is None:
            raise InvalidSlotError(f"No document stored in {slot.key} for registration {registration_id}")

        stored = await self.repository.update(
            registration_id,
            working,
            expected_updated_at=registration.updated_at if self.settings.optimistic_concurrency else None,
        )
        await self._delete_blob(registration_id, removed)
        self._logger.info("document_removed", registration_id=registration_id, slot=slot.key, name=removed.name)
        self.events.emit(RegistrationEventType.DOCUMENT_REMOVED, stored)
        return stored

    async def drain(self) -> None:
        await self.notifications.drain()

    async def _fetch(self, registration_id: str) -> Registration:
        try:
            return await self.repository.get(registration_id)
        except (RegistrationNotFound, PersistenceError) as exc:
            raise FetchFailed(f"Cannot load registration {registration_id}: {exc}") from exc

    async def _persist(self, registration_id: str, working: Registration, latest: Registration) -> Registration:
        expected = latest.updated_at if self.settings.optimistic_concurrency else None
        try:
            return await self.repository.update(registration_id, working, expected_updated_at=expected)
        except (RegistrationNotFound, PersistenceError) as exc:
            raise PersistFailed(f"Cannot save registration {registration_id}: {exc}") from exc

    @staticmethod
    def _check_form18(latest: Registration, pending: PendingDocumentSet) -> None:
        expected = len(latest.directors)
        width = max([len(latest.form18)] + [index + 1 for index in pending.form18])
        present = sum(
            1
            for index in range(width)
            if index in pending.form18 or (index < len(latest.form18) and latest.form18[index] is not None)
        )
        if width != expected or present != expected:
            raise IncompleteForm18(expected=expected, present=present)

    @staticmethod
    async def _merge_single(run: _MergeRun, working: Registration, pending: PendingDocumentSet, slot: SingleSlot) -> None:
        document = pending.single(slot)
        if document is None:
            return
        setattr(working, slot.field, await run.materialise(slot, document))

    @staticmethod
    async def _merge_form18(run: _MergeRun, working: Registration, pending: PendingDocumentSet) -> None:
        width = max([len(working.form18)] + [index + 1 for index in pending.form18])
        merged: list[Document | None] = list(working.form18) + [None] * (width - len(working.form18))
        for index in sorted(pending.form18):
            merged[index] = await run.materialise(Form18Slot(index), pending.form18[index])
        working.form18 = merged

    @staticmethod
    async def _merge_sequence(
        run: _MergeRun,
        working: Registration,
        pending: PendingDocumentSet,
        slot: SequenceSlot,
    ) -> None:
        additions = pending.sequence(slot)
        if not additions:
            return
        merged = list(getattr(working, slot.field))
        for position, document in enumerate(additions):
            merged.append(await run.materialise(SequenceSlot(slot.sequence, position), document))
        setattr(working, slot.field, merged)

    async def _delete_blob(self, registration_id: str, document: Document) -> None:
        try:
            if document.id:
                await self.storage.delete_by_id(document.id)
            elif document.file_path:
                await self.storage.delete_by_path(document.file_path)
            else:
                return
        except StorageError as exc:
            self._logger.warning(
                "document_blob_delete_failed",
                registration_id=registration_id,
                name=document.name,
                error=str(exc),
            )

    def _succeeded(
        self,
        operation: str,
        stored: Registration,
        run: _MergeRun,
        event: RegistrationEventType,
        *,
        notification: str | None,
    ) -> None:
        metrics.inc(f"{operation}.success")
        self._logger.info(
            f"{operation}_succeeded",
            registration_id=stored.id,
            uploaded=len(run.uploaded),
            status=getattr(stored.status, "value", stored.status),
        )
        self.events.emit(event, stored)
        # the portal only exposes payment-approval and registration-completed
        if notification is not None:
            self.notifications.dispatch(notification, stored)

    def _failed(self, operation: str, registration_id: str, exc: PublishFailure, run: _MergeRun) -> PublishOutcome:
        error = _to_error(exc)
        orphaned = run.orphan_refs()
        metrics.inc(f"{operation}.failure.{error.kind.value}")
        if orphaned:
            metrics.inc("publish.orphaned_blobs", len(orphaned))
        self._logger.warning(
            f"{operation}_failed",
            registration_id=registration_id,
            kind=error.kind.value,
            slot=error.slot,
            error=error.message,
            orphaned_blobs=orphaned,
        )
        return PublishOutcome(error=error, orphaned_blobs=orphaned)


def _to_error(exc: PublishFailure) -> PublishError:
    if isinstance(exc, UploadFailed):
        return PublishError(kind=PublishErrorKind.UPLOAD_FAILED, message=str(exc), slot=exc.slot)
    if isinstance(exc, IncompleteForm18):
        return PublishError(kind=PublishErrorKind.INCOMPLETE_FORM18, message=str(exc), slot="form18")
    if isinstance(exc, FetchFailed):
        return PublishError(kind=PublishErrorKind.FETCH_FAILED, message=str(exc))
    if isinstance(exc, PersistFailed):
        return PublishError(kind=PublishErrorKind.PERSIST_FAILED, message=str(exc))
    if isinstance(exc, PublishInProgress):
        return PublishError(kind=PublishErrorKind.IN_PROGRESS, message=str(exc))
    if isinstance(exc, CertificateMissing):
        return PublishError(kind=PublishErrorKind.CERTIFICATE_MISSING, message=str(exc), slot=INCORPORATION_CERTIFICATE.key)
    return PublishError(kind=PublishErrorKind.GATE_LOCKED, message=str(exc))
