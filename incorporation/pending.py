from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from .exceptions import DocumentRejected, GateLockedError, InvalidSlotError
from .models import Document, Registration, WorkflowStep
from .settings import WorkflowSettings
from .slots import DocumentSlot, Form18Slot, SequenceSlot, SingleSlot
from .steps import StepResolver, default_resolver, gate_flag_for


@dataclass
class PendingDocumentSet:
    """Client-held documents not yet merged into the persisted registration."""

    registration_id: str
    singles: dict[SingleSlot, Document] = field(default_factory=dict)
    form18: dict[int, Document] = field(default_factory=dict)
    sequences: dict[SequenceSlot, list[Document]] = field(default_factory=dict)

    def stage(self, slot: DocumentSlot, document: Document) -> None:
        if isinstance(slot, SingleSlot):
            self.singles[slot] = document
        elif isinstance(slot, Form18Slot):
            self.form18[slot.index] = document
        else:
            if slot.index is not None:
                raise InvalidSlotError(f"{slot.sequence.value} appends documents; stage it without an index")
            self.sequences.setdefault(slot, []).append(document)

    def discard(self, slot: DocumentSlot) -> list[Document]:
        """Drop pending documents held under ``slot`` and return what was removed."""
        if isinstance(slot, SingleSlot):
            removed = self.singles.pop(slot, None)
            return [removed] if removed is not None else []
        if isinstance(slot, Form18Slot):
            removed = self.form18.pop(slot.index, None)
            return [removed] if removed is not None else []

        base = SequenceSlot(slot.sequence)
        items = self.sequences.get(base, [])
        if slot.index is None:
            self.sequences.pop(base, None)
            return items
        if slot.index >= len(items):
            return []
        removed = items.pop(slot.index)
        if not items:
            self.sequences.pop(base, None)
        return [removed]

    def snapshot(self) -> PendingDocumentSet:
        return PendingDocumentSet(
            registration_id=self.registration_id,
            singles=dict(self.singles),
            form18=dict(self.form18),
            sequences={slot: list(docs) for slot, docs in self.sequences.items()},
        )

    def forget(self, merged: PendingDocumentSet, step: WorkflowStep | None = None) -> None:
        """Remove the documents held in ``merged``; anything staged after the snapshot stays."""
        for slot, document in merged.singles.items():
            if (step is None or slot.step == step) and self.singles.get(slot) is document:
                del self.singles[slot]
        if step in (None, WorkflowStep.DOCUMENTATION):
            for index, document in merged.form18.items():
                if self.form18.get(index) is document:
                    del self.form18[index]
        for slot, documents in merged.sequences.items():
            if step is not None and slot.step != step:
                continue
            merged_ids = {id(document) for document in documents}
            remaining = [document for document in self.sequences.get(slot, []) if id(document) not in merged_ids]
            if remaining:
                self.sequences[slot] = remaining
            else:
                self.sequences.pop(slot, None)

    def single(self, slot: SingleSlot) -> Document | None:
        return self.singles.get(slot)

    def sequence(self, slot: SequenceSlot) -> list[Document]:
        return list(self.sequences.get(SequenceSlot(slot.sequence), []))

    def entries(self, step: WorkflowStep | None = None) -> list[tuple[DocumentSlot, Document]]:
        """Flat ``(slot, document)`` view, sequence items carrying their position."""
        out: list[tuple[DocumentSlot, Document]] = []
        for single_slot, document in self.singles.items():
            out.append((single_slot, document))
        for index in sorted(self.form18):
            out.append((Form18Slot(index), self.form18[index]))
        for sequence_slot, documents in self.sequences.items():
            for position, document in enumerate(documents):
                out.append((SequenceSlot(sequence_slot.sequence, position), document))
        if step is None:
            return out
        return [(slot, document) for slot, document in out if slot.step == step]

    def is_empty(self, step: WorkflowStep | None = None) -> bool:
        return not self.entries(step)

    def clear(self, step: WorkflowStep | None = None) -> None:
        if step is None:
            self.singles.clear()
            self.form18.clear()
            self.sequences.clear()
            return
        self.singles = {slot: doc for slot, doc in self.singles.items() if slot.step != step}
        if step == WorkflowStep.DOCUMENTATION:
            self.form18.clear()
        self.sequences = {slot: docs for slot, docs in self.sequences.items() if slot.step != step}


@dataclass
class PendingDocumentStore:
    """Session-scoped pending overlays, one per registration. Nothing here survives a restart."""

    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    resolver: StepResolver = default_resolver
    _sets: dict[str, PendingDocumentSet] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._logger = structlog.get_logger("pending_documents")

    def for_registration(self, registration_id: str) -> PendingDocumentSet:
        pending = self._sets.get(registration_id)
        if pending is None:
            pending = PendingDocumentSet(registration_id=registration_id)
            self._sets[registration_id] = pending
        return pending

    def stage(self, registration: Registration, slot: DocumentSlot, document: Document) -> PendingDocumentSet:
        if not self.resolver.is_navigable(registration, slot.step):
            raise GateLockedError(
                f"Step {int(slot.step)} is locked for registration {registration.id}: {gate_flag_for(slot.step)} is not set"
            )
        if isinstance(slot, Form18Slot) and slot.index >= len(registration.directors):
            raise InvalidSlotError(
                f"form18 index {slot.index} out of range for {len(registration.directors)} directors"
            )
        self.validate(document)
        pending = self.for_registration(registration.id)
        pending.stage(slot, document)
        self._logger.info(
            "pending_document_staged",
            registration_id=registration.id,
            slot=slot.key,
            name=document.name,
            size=document.size,
        )
        return pending

    def discard(self, registration_id: str, slot: DocumentSlot) -> list[Document]:
        removed = self.for_registration(registration_id).discard(slot)
        self._logger.info("pending_document_discarded", registration_id=registration_id, slot=slot.key, removed=len(removed))
        return removed

    def drop(self, registration_id: str) -> None:
        self._sets.pop(registration_id, None)

    def prune(self, registration_id: str) -> None:
        pending = self._sets.get(registration_id)
        if pending is not None and pending.is_empty():
            del self._sets[registration_id]

    def validate(self, document: Document) -> None:
        if document.type not in self.settings.allowed_content_types:
            raise DocumentRejected(f"File type {document.type} is not allowed")
        size = document.size if document.size is not None else len(document.content or b"")
        if size > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes // (1024 * 1024)
            raise DocumentRejected(f"File size exceeds maximum allowed size of {limit_mb}MB")
