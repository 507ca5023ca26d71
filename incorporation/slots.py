"""Document slot identities.

A slot names exactly one place on a registration a document can live in:
a single-document field, one director's form18 entry, or an append-only
document sequence. Slots are hashable so they can key the pending overlay.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .exceptions import InvalidSlotError
from .models import WorkflowStep


class SingleDocument(str, Enum):
    FORM1 = "form1"
    FORM19 = "form19"
    AOA = "aoa"
    INCORPORATION_CERTIFICATE = "incorporation-certificate"


class DocumentSequence(str, Enum):
    STEP3_ADDITIONAL = "step3-additional"
    STEP4_FINAL_ADDITIONAL = "step4-final-additional"
    ADDITIONAL_DOCUMENTS = "additional-documents"


_SINGLE_FIELDS = {
    SingleDocument.FORM1: "form1",
    SingleDocument.FORM19: "form19",
    SingleDocument.AOA: "aoa",
    SingleDocument.INCORPORATION_CERTIFICATE: "incorporation_certificate",
}

_SEQUENCE_FIELDS = {
    DocumentSequence.STEP3_ADDITIONAL: "step3_additional_doc",
    DocumentSequence.STEP4_FINAL_ADDITIONAL: "step4_final_additional_doc",
    DocumentSequence.ADDITIONAL_DOCUMENTS: "additional_documents",
}

_STEP4_MEMBERS = {SingleDocument.INCORPORATION_CERTIFICATE, DocumentSequence.STEP4_FINAL_ADDITIONAL}


@dataclass(frozen=True)
class SingleSlot:
    document: SingleDocument

    @property
    def field(self) -> str:
        return _SINGLE_FIELDS[self.document]

    @property
    def step(self) -> WorkflowStep:
        return WorkflowStep.INCORPORATION if self.document in _STEP4_MEMBERS else WorkflowStep.DOCUMENTATION

    @property
    def key(self) -> str:
        return self.document.value


@dataclass(frozen=True)
class Form18Slot:
    index: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise InvalidSlotError(f"form18 index must be non-negative, got {self.index}")

    @property
    def field(self) -> str:
        return "form18"

    @property
    def step(self) -> WorkflowStep:
        return WorkflowStep.DOCUMENTATION

    @property
    def key(self) -> str:
        return f"form18:{self.index}"


@dataclass(frozen=True)
class SequenceSlot:
    sequence: DocumentSequence
    index: int | None = None

    @property
    def field(self) -> str:
        return _SEQUENCE_FIELDS[self.sequence]

    @property
    def step(self) -> WorkflowStep:
        return WorkflowStep.INCORPORATION if self.sequence in _STEP4_MEMBERS else WorkflowStep.DOCUMENTATION

    @property
    def key(self) -> str:
        if self.index is None:
            return self.sequence.value
        return f"{self.sequence.value}:{self.index}"


DocumentSlot = SingleSlot | Form18Slot | SequenceSlot

FORM1 = SingleSlot(SingleDocument.FORM1)
FORM19 = SingleSlot(SingleDocument.FORM19)
AOA = SingleSlot(SingleDocument.AOA)
INCORPORATION_CERTIFICATE = SingleSlot(SingleDocument.INCORPORATION_CERTIFICATE)
STEP3_ADDITIONAL = SequenceSlot(DocumentSequence.STEP3_ADDITIONAL)
STEP4_FINAL_ADDITIONAL = SequenceSlot(DocumentSequence.STEP4_FINAL_ADDITIONAL)
ADDITIONAL_DOCUMENTS = SequenceSlot(DocumentSequence.ADDITIONAL_DOCUMENTS)

PUBLISHED_SINGLE_SLOTS = (FORM1, FORM19, AOA)
PUBLISHED_SEQUENCES = (STEP3_ADDITIONAL, STEP4_FINAL_ADDITIONAL, ADDITIONAL_DOCUMENTS)


def parse_slot(key: str) -> DocumentSlot:
    """Resolve ``form1``, ``form18:2``, ``step3-additional`` or ``step3-additional:0``."""
    raw = key.strip().lower()
    name, sep, index_raw = raw.partition(":")
    index: int | None = None
    if sep:
        try:
            index = int(index_raw)
        except ValueError as exc:
            raise InvalidSlotError(f"Invalid slot index in {key!r}") from exc
        if index < 0:
            raise InvalidSlotError(f"Invalid slot index in {key!r}")

    if name == "form18":
        if index is None:
            raise InvalidSlotError("form18 slots need a director index, e.g. form18:0")
        return Form18Slot(index)

    try:
        single = SingleDocument(name)
    except ValueError:
        single = None
    if single is not None:
        if index is not None:
            raise InvalidSlotError(f"{name} holds a single document and takes no index")
        return SingleSlot(single)

    try:
        sequence = DocumentSequence(name)
    except ValueError as exc:
        raise InvalidSlotError(f"Unknown document slot: {key!r}") from exc
    return SequenceSlot(sequence, index)
