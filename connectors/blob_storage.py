from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

import boto3
import httpx
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

import config
from incorporation.exceptions import StorageError
from incorporation.ports import UploadedBlob


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class HttpBlobStorage:
    """Blob storage behind the portal's ``/api/upload`` and ``/api/files`` endpoints.

    Uploads are sent once: a retried multipart POST would leave a second
    copy of the file behind.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._logger = structlog.get_logger("blob_storage")
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def upload(self, content: bytes, *, owner_id: str, name: str, content_type: str | None) -> UploadedBlob:
        files = {"file": (name, content, content_type or "application/octet-stream")}
        try:
            resp = await self._client.post(
                f"{self._base_url}/api/upload",
                files=files,
                data={"uploadedBy": owner_id},
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"upload of {name} failed: {exc}") from exc

        payload = self._json(resp, f"upload of {name}")
        file_info = payload.get("file")
        if not payload.get("success") or not isinstance(file_info, dict) or not file_info.get("url"):
            raise StorageError(f"upload of {name} failed: {payload.get('error') or 'no file in response'}")

        self._logger.info("blob_uploaded", owner_id=owner_id, name=name, size=len(content))
        return UploadedBlob(
            url=file_info["url"],
            path=file_info.get("filePath"),
            id=_as_str(file_info.get("id")),
            uploaded_at=file_info.get("uploadedAt") or _utcnow(),
        )

    async def delete_by_path(self, path: str) -> None:
        await self._delete(f"{self._base_url}/api/upload", params={"path": path}, what=path)

    async def delete_by_id(self, blob_id: str) -> None:
        await self._delete(f"{self._base_url}/api/files/{blob_id}", params=None, what=blob_id)

    async def _delete(self, url: str, *, params: dict[str, str] | None, what: str) -> None:
        try:
            resp = await self._client.delete(url, params=params)
        except httpx.HTTPError as exc:
            raise StorageError(f"delete of {what} failed: {exc}") from exc
        self._json(resp, f"delete of {what}")
        self._logger.info("blob_deleted", target=what)

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if resp.status_code >= 400:
            raise StorageError(f"{what} failed: HTTP {resp.status_code} {payload.get('error', '')}".rstrip())
        return payload


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def build_s3_client():
    session = boto3.session.Session()
    return session.client(
        "s3",
        endpoint_url=config.S3_ENDPOINT_URL,
        aws_access_key_id=config.S3_ACCESS_KEY,
        aws_secret_access_key=config.S3_SECRET_KEY,
        config=Config(signature_version="s3v4"),
        region_name=config.S3_REGION,
    )


class S3BlobStorage:
    """Writes documents straight to an S3-compatible bucket and hands out presigned links."""

    def __init__(self, client: Any, bucket: str, *, url_ttl_seconds: int = 7 * 24 * 3600, prefix: str = "registrations"):
        self._client = client
        self._bucket = bucket
        self._url_ttl_seconds = url_ttl_seconds
        self._prefix = prefix.strip("/")
        self._logger = structlog.get_logger("blob_storage")

    async def upload(self, content: bytes, *, owner_id: str, name: str, content_type: str | None) -> UploadedBlob:
        key = f"{self._prefix}/{owner_id}/{uuid.uuid4().hex}-{name}"

        def _put() -> str:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
                ACL="private",
            )
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._url_ttl_seconds,
            )

        try:
            url = await asyncio.to_thread(_put)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"upload of {name} failed: {exc}") from exc
        self._logger.info("blob_uploaded", owner_id=owner_id, name=name, key=key, size=len(content))
        return UploadedBlob(url=url, path=key, id=key, uploaded_at=_utcnow())

    async def delete_by_path(self, path: str) -> None:
        await self._delete(path)

    async def delete_by_id(self, blob_id: str) -> None:
        # object keys double as ids
        await self._delete(blob_id)

    async def _delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"delete of {key} failed: {exc}") from exc
        self._logger.info("blob_deleted", target=key)
