from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RegistrationStatus(str, Enum):
    PAYMENT_PROCESSING = "payment-processing"
    PAYMENT_REJECTED = "payment-rejected"
    DOCUMENTATION_PROCESSING = "documentation-processing"
    INCORPORATION_PROCESSING = "incorporation-processing"
    DOCUMENTS_SUBMITTED = "documents-submitted"
    DOCUMENTS_PUBLISHED = "documents-published"
    COMPLETED = "completed"


class WorkflowStep(IntEnum):
    PAYMENT = 1
    COMPANY_DETAILS = 2
    DOCUMENTATION = 3
    INCORPORATION = 4

    @property
    def key(self) -> str:
        """Step identifier used by the portal's ``currentStep`` column."""
        return _STEP_KEYS[self]


_STEP_KEYS = {
    WorkflowStep.PAYMENT: "contact-details",
    WorkflowStep.COMPANY_DETAILS: "company-details",
    WorkflowStep.DOCUMENTATION: "documentation",
    WorkflowStep.INCORPORATION: "incorporate",
}


class WireModel(BaseModel):
    """camelCase on the wire, unknown columns kept so full-record writes do not drop them."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Document(WireModel):
    name: str
    type: str | None = None
    size: int | None = None
    url: str | None = None
    file_path: str | None = None
    id: str | None = None
    uploaded_at: datetime | None = None
    content: bytes | None = Field(default=None, exclude=True, repr=False)

    @property
    def is_stored(self) -> bool:
        return bool(self.url or self.id)

    @property
    def has_payload(self) -> bool:
        return self.content is not None


class Director(WireModel):
    full_name: str | None = None
    email: str | None = None


class Registration(WireModel):
    id: str = Field(alias="_id")
    status: RegistrationStatus | str = RegistrationStatus.PAYMENT_PROCESSING
    current_step: str | None = None

    payment_approved: bool = False
    details_approved: bool = False
    documents_approved: bool = False

    form1: Document | None = None
    form19: Document | None = None
    aoa: Document | None = None
    form18: list[Document | None] = Field(default_factory=list)
    step3_additional_doc: list[Document] = Field(default_factory=list)
    incorporation_certificate: Document | None = None
    step4_final_additional_doc: list[Document] = Field(default_factory=list)
    additional_documents: list[Document] = Field(default_factory=list)

    documents_published: bool = False
    documents_published_at: datetime | None = None

    directors: list[Director] = Field(default_factory=list)
    company_name_english: str | None = None
    contact_person_name: str | None = None
    contact_person_email: str | None = None
    updated_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status_as_enum(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, RegistrationStatus):
            try:
                return RegistrationStatus(value)
            except ValueError:
                return value
        return value

    @field_validator(
        "form18",
        "step3_additional_doc",
        "step4_final_additional_doc",
        "additional_documents",
        "directors",
        mode="before",
    )
    @classmethod
    def _null_sequence_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("payment_approved", "details_approved", "documents_approved", "documents_published", mode="before")
    @classmethod
    def _null_flag_as_false(cls, value: Any) -> Any:
        # MySQL tinyint columns arrive as 0/1/null
        return False if value is None else value


class StepState(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_step: WorkflowStep
    navigable: frozenset[WorkflowStep]

    def is_navigable(self, step: WorkflowStep | int) -> bool:
        return step in self.navigable
