from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel

from .models import Registration


class UploadedBlob(BaseModel):
    url: str
    path: str | None = None
    id: str | None = None
    uploaded_at: datetime


class RegistrationRepository(Protocol):
    """Registration persistence with full-document replace semantics."""

    async def get(self, registration_id: str) -> Registration:
        ...

    async def update(
        self,
        registration_id: str,
        registration: Registration,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Registration:
        ...


class BlobStorage(Protocol):
    async def upload(self, content: bytes, *, owner_id: str, name: str, content_type: str | None) -> UploadedBlob:
        ...

    async def delete_by_path(self, path: str) -> None:
        ...

    async def delete_by_id(self, blob_id: str) -> None:
        ...


class Notifier(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...
