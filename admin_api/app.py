from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from functools import lru_cache
from typing import Any

import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import config
from connectors.blob_storage import HttpBlobStorage, S3BlobStorage, build_s3_client
from connectors.notifications import HttpNotifier
from connectors.registration_api import RegistrationApiClient
from incorporation.approvals import GateApprovals
from incorporation.dispatch import NotificationDispatcher
from incorporation.events import RegistrationEventBus
from incorporation.exceptions import (
    ConcurrentModificationError,
    DocumentRejected,
    GateLockedError,
    InvalidSlotError,
    PersistenceError,
    RegistrationNotFound,
)
from incorporation.models import Document, Registration
from incorporation.pending import PendingDocumentStore
from incorporation.ports import BlobStorage, Notifier, RegistrationRepository
from incorporation.publisher import DocumentPublisher, PublishErrorKind, PublishOutcome
from incorporation.repository import FallbackRegistrationRepository, JsonFileRegistrationStore
from incorporation.settings import WorkflowSettings
from incorporation.slots import parse_slot
from incorporation.steps import StepResolver, default_resolver, queue_bucket

from .logging import configure_logging, mask_email
from .schemas import ApprovalGate, OutcomeResponse, PendingResponse, StepStateResponse

logger = structlog.get_logger("admin_api")

_OUTCOME_STATUS = {
    PublishErrorKind.FETCH_FAILED: 502,
    PublishErrorKind.UPLOAD_FAILED: 502,
    PublishErrorKind.PERSIST_FAILED: 502,
    PublishErrorKind.INCOMPLETE_FORM18: 422,
    PublishErrorKind.CERTIFICATE_MISSING: 422,
    PublishErrorKind.IN_PROGRESS: 409,
    PublishErrorKind.GATE_LOCKED: 409,
}


class RegistrationWorkflow:
    """Wires the workflow services around one repository, one blob store and one notifier."""

    def __init__(
        self,
        repository: RegistrationRepository,
        storage: BlobStorage,
        notifier: Notifier | None = None,
        *,
        settings: WorkflowSettings | None = None,
        resolver: StepResolver = default_resolver,
        closeables: list[Any] | None = None,
    ) -> None:
        self.settings = settings or WorkflowSettings()
        self.resolver = resolver
        self.repository = repository
        self.storage = storage
        self.events = RegistrationEventBus()
        self.notifications = NotificationDispatcher(notifier, enabled=self.settings.notifications_enabled)
        self.pending = PendingDocumentStore(settings=self.settings, resolver=resolver)
        self.publisher = DocumentPublisher(
            repository=repository,
            storage=storage,
            pending_store=self.pending,
            settings=self.settings,
            events=self.events,
            notifications=self.notifications,
        )
        self.approvals = GateApprovals(
            repository=repository,
            resolver=resolver,
            settings=self.settings,
            events=self.events,
            notifications=self.notifications,
        )
        self._closeables = closeables or []

    @classmethod
    def from_config(cls) -> "RegistrationWorkflow":
        api = RegistrationApiClient(
            config.REGISTRATION_API_BASE_URL,
            timeout_seconds=config.HTTP_TIMEOUT_SECONDS,
            max_retries=config.HTTP_MAX_RETRIES,
            backoff_base_seconds=config.HTTP_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=config.HTTP_BACKOFF_MAX_SECONDS,
        )
        repository: RegistrationRepository = api
        if config.FALLBACK_CACHE_ENABLED:
            repository = FallbackRegistrationRepository(api, JsonFileRegistrationStore(config.FALLBACK_CACHE_PATH))

        closeables: list[Any] = [api]
        storage: BlobStorage
        if config.BLOB_BACKEND.strip().lower() == "s3":
            if not config.S3_BUCKET:
                raise RuntimeError("S3_BUCKET must be set when BLOB_BACKEND=s3")
            storage = S3BlobStorage(
                build_s3_client(),
                config.S3_BUCKET,
                url_ttl_seconds=config.S3_PRESIGNED_URL_TTL_SECONDS,
            )
        else:
            http_storage = HttpBlobStorage(config.UPLOAD_API_BASE_URL, timeout_seconds=config.UPLOAD_TIMEOUT_SECONDS)
            closeables.append(http_storage)
            storage = http_storage

        notifier = HttpNotifier(config.NOTIFICATION_API_BASE_URL, timeout_seconds=config.HTTP_TIMEOUT_SECONDS)
        closeables.append(notifier)
        return cls(repository, storage, notifier, closeables=closeables)

    async def aclose(self) -> None:
        await self.notifications.drain()
        for resource in self._closeables:
            await resource.aclose()


@lru_cache(maxsize=1)
def _default_workflow() -> RegistrationWorkflow:
    return RegistrationWorkflow.from_config()


def get_workflow() -> RegistrationWorkflow:
    return _default_workflow()


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except RegistrationNotFound as exc:
        raise HTTPException(status_code=404, detail=f"registration {exc} not found") from exc
    except ConcurrentModificationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except GateLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidSlotError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _outcome_response(outcome: PublishOutcome) -> OutcomeResponse:
    body = OutcomeResponse.from_outcome(outcome)
    if outcome.error is not None:
        raise HTTPException(status_code=_OUTCOME_STATUS[outcome.error.kind], detail=body.model_dump(mode="json"))
    return body


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    if _default_workflow.cache_info().currsize:
        await _default_workflow().aclose()


configure_logging()

app = FastAPI(title="Incorporation Admin Workflow", version="1.0.0", lifespan=_lifespan)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/v1/registrations/{registration_id}/steps", response_model=StepStateResponse)
async def get_steps(
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> StepStateResponse:
    with _http_errors():
        registration = await workflow.repository.get(registration_id)
    bucket = queue_bucket(registration)
    return StepStateResponse.build(
        registration_id,
        workflow.resolver.resolve(registration),
        int(bucket) if bucket is not None else None,
    )


@app.get("/v1/registrations/{registration_id}/pending", response_model=PendingResponse)
async def list_pending(
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> PendingResponse:
    return PendingResponse.from_set(workflow.pending.for_registration(registration_id))


@app.post("/v1/registrations/{registration_id}/pending", response_model=PendingResponse)
async def stage_pending(
    registration_id: str,
    slot: str = Form(...),
    file: UploadFile = File(...),
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> PendingResponse:
    content = await file.read()
    document = Document(
        name=file.filename or "document",
        type=file.content_type,
        size=len(content),
        content=content,
    )
    with _http_errors():
        target = parse_slot(slot)
        registration = await workflow.repository.get(registration_id)
        try:
            pending = workflow.pending.stage(registration, target, document)
        except DocumentRejected as exc:
            status_code = 413 if len(content) > workflow.settings.max_upload_bytes else 415
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    return PendingResponse.from_set(pending)


@app.delete("/v1/registrations/{registration_id}/pending", response_model=PendingResponse)
async def discard_pending(
    registration_id: str,
    slot: str | None = None,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> PendingResponse:
    if slot is None:
        workflow.pending.drop(registration_id)
    else:
        with _http_errors():
            workflow.pending.discard(registration_id, parse_slot(slot))
    return PendingResponse.from_set(workflow.pending.for_registration(registration_id))


@app.post("/v1/registrations/{registration_id}/publish", response_model=OutcomeResponse)
async def publish_documents(
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> OutcomeResponse:
    outcome = await workflow.publisher.publish(registration_id)
    return _outcome_response(outcome)


@app.post("/v1/registrations/{registration_id}/complete", response_model=OutcomeResponse)
async def complete_registration(
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> OutcomeResponse:
    outcome = await workflow.publisher.complete(registration_id)
    return _outcome_response(outcome)


@app.post("/v1/registrations/{registration_id}/approvals/{gate}")
async def approve_gate(
    registration_id: str,
    gate: ApprovalGate,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    actions = {
        ApprovalGate.payment: workflow.approvals.approve_payment,
        ApprovalGate.details: workflow.approvals.approve_details,
        ApprovalGate.documents: workflow.approvals.approve_documents,
    }
    with _http_errors():
        stored = await actions[gate](registration_id)
    _log_decision(f"{gate.value}_approved", stored)
    return stored.to_wire()


@app.post("/v1/registrations/{registration_id}/reject-payment")
async def reject_payment(
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    with _http_errors():
        stored = await workflow.approvals.reject_payment(registration_id)
    _log_decision("payment_rejected", stored)
    return stored.to_wire()


@app.delete("/v1/registrations/{registration_id}/documents")
async def remove_document(
    registration_id: str,
    slot: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    with _http_errors():
        stored = await workflow.publisher.remove_document(registration_id, parse_slot(slot))
    return stored.to_wire()


def _log_decision(decision: str, registration: Registration) -> None:
    logger.info(
        "admin_decision",
        decision=decision,
        registration_id=registration.id,
        contact=mask_email(registration.contact_person_email),
    )
