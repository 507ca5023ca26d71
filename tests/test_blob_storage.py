import asyncio
from unittest.mock import Mock

import httpx
import pytest
from botocore.exceptions import ClientError

from connectors.blob_storage import HttpBlobStorage, S3BlobStorage
from incorporation.exceptions import StorageError


def _http_storage(handler) -> HttpBlobStorage:
    return HttpBlobStorage("https://portal.example", transport=httpx.MockTransport(handler))


def test_http_upload_posts_multipart_and_parses_file_info():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.read()
        return httpx.Response(
            200,
            json={
                "success": True,
                "file": {
                    "id": 42,
                    "originalName": "form1.pdf",
                    "filePath": "/uploads/1700000000-form1.pdf",
                    "url": "https://portal.example/uploads/1700000000-form1.pdf",
                    "uploadedAt": "2024-01-01T00:00:00.000Z",
                },
            },
        )

    storage = _http_storage(handler)
    blob = asyncio.run(storage.upload(b"%PDF-1.4", owner_id="reg-1", name="form1.pdf", content_type="application/pdf"))
    asyncio.run(storage.aclose())

    assert captured["url"] == "https://portal.example/api/upload"
    assert b'name="uploadedBy"' in captured["body"]
    assert b"reg-1" in captured["body"]
    assert b'filename="form1.pdf"' in captured["body"]
    assert blob.id == "42"
    assert blob.path == "/uploads/1700000000-form1.pdf"
    assert blob.url.endswith("form1.pdf")
    assert blob.uploaded_at.year == 2024


def test_http_upload_is_single_attempt():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(500, json={"error": "Failed to upload file"})

    with pytest.raises(StorageError, match="Failed to upload file"):
        asyncio.run(_http_storage(handler).upload(b"x", owner_id="reg-1", name="a.pdf", content_type=None))
    assert len(attempts) == 1


def test_http_upload_rejected_payload():
    storage = _http_storage(lambda request: httpx.Response(200, json={"success": False, "error": "File type not allowed"}))

    with pytest.raises(StorageError, match="File type not allowed"):
        asyncio.run(storage.upload(b"x", owner_id="reg-1", name="a.exe", content_type="application/x-msdownload"))


def test_http_upload_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(StorageError):
        asyncio.run(_http_storage(handler).upload(b"x", owner_id="reg-1", name="a.pdf", content_type=None))


def test_http_deletes():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, dict(request.url.params)))
        return httpx.Response(200, json={"success": True})

    storage = _http_storage(handler)
    asyncio.run(storage.delete_by_path("/uploads/a.pdf"))
    asyncio.run(storage.delete_by_id("42"))

    assert requests == [
        ("DELETE", "/api/upload", {"path": "/uploads/a.pdf"}),
        ("DELETE", "/api/files/42", {}),
    ]


def test_http_delete_failure():
    storage = _http_storage(lambda request: httpx.Response(404, json={"error": "File not found"}))

    with pytest.raises(StorageError):
        asyncio.run(storage.delete_by_id("42"))


def test_s3_upload_puts_object_and_presigns():
    client = Mock()
    client.generate_presigned_url.return_value = "https://bucket.example/signed"
    storage = S3BlobStorage(client, "docs", url_ttl_seconds=60)

    blob = asyncio.run(storage.upload(b"data", owner_id="reg-1", name="aoa.pdf", content_type="application/pdf"))

    put_kwargs = client.put_object.call_args.kwargs
    assert put_kwargs["Bucket"] == "docs"
    assert put_kwargs["Key"].startswith("registrations/reg-1/")
    assert put_kwargs["Key"].endswith("-aoa.pdf")
    assert put_kwargs["ContentType"] == "application/pdf"
    assert blob.url == "https://bucket.example/signed"
    assert blob.path == put_kwargs["Key"]
    assert client.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 60


def test_s3_errors_become_storage_errors():
    client = Mock()
    client.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    client.delete_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "DeleteObject")
    storage = S3BlobStorage(client, "docs")

    with pytest.raises(StorageError):
        asyncio.run(storage.upload(b"x", owner_id="reg-1", name="a.pdf", content_type=None))
    with pytest.raises(StorageError):
        asyncio.run(storage.delete_by_path("registrations/reg-1/a.pdf"))


def test_s3_delete_by_id_uses_key():
    client = Mock()
    storage = S3BlobStorage(client, "docs")

    asyncio.run(storage.delete_by_id("registrations/reg-1/a.pdf"))

    client.delete_object.assert_called_once_with(Bucket="docs", Key="registrations/reg-1/a.pdf")
