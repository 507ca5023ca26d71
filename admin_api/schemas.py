from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from incorporation.models import Document, StepState
from incorporation.pending import PendingDocumentSet
from incorporation.publisher import PublishError, PublishOutcome


class ApprovalGate(str, Enum):
    payment = "payment"
    details = "details"
    documents = "documents"


class StepStateResponse(BaseModel):
    registration_id: str
    active_step: int
    active_step_key: str
    navigable: list[int]
    queue: int | None = None

    @classmethod
    def build(cls, registration_id: str, state: StepState, queue: int | None) -> "StepStateResponse":
        return cls(
            registration_id=registration_id,
            active_step=int(state.active_step),
            active_step_key=state.active_step.key,
            navigable=sorted(int(step) for step in state.navigable),
            queue=queue,
        )


class PendingEntry(BaseModel):
    slot: str
    step: int
    name: str
    type: str | None = None
    size: int | None = None
    stored: bool = False

    @classmethod
    def from_document(cls, slot_key: str, step: int, document: Document) -> "PendingEntry":
        return cls(
            slot=slot_key,
            step=step,
            name=document.name,
            type=document.type,
            size=document.size,
            stored=document.is_stored,
        )


class PendingResponse(BaseModel):
    registration_id: str
    entries: list[PendingEntry] = Field(default_factory=list)

    @classmethod
    def from_set(cls, pending: PendingDocumentSet) -> "PendingResponse":
        return cls(
            registration_id=pending.registration_id,
            entries=[PendingEntry.from_document(slot.key, int(slot.step), doc) for slot, doc in pending.entries()],
        )


class OutcomeResponse(BaseModel):
    registration: dict[str, Any] | None = None
    error: PublishError | None = None
    orphaned_blobs: list[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: PublishOutcome) -> "OutcomeResponse":
        return cls(
            registration=outcome.registration.to_wire() if outcome.registration is not None else None,
            error=outcome.error,
            orphaned_blobs=outcome.orphaned_blobs,
        )
