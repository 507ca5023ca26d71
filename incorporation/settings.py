from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)


class WorkflowSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INCORPORATION_", extra="forbid")

    allowed_content_types: frozenset[str] = DEFAULT_ALLOWED_TYPES
    max_upload_bytes: int = 100 * 1024 * 1024
    optimistic_concurrency: bool = False
    notifications_enabled: bool = True
    require_certificate_on_complete: bool = True
