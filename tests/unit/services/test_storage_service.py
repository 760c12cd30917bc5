"""Tests for the Supabase storage client."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from titlescan.core.exceptions import ObjectNotFoundError, StorageError
from titlescan.services.storage_service import StorageService

BASE_URL = "https://storage.example.test"


def _response(status_code: int, method: str = "GET", **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request(method, BASE_URL), **kwargs)


@pytest.fixture
def storage() -> StorageService:
    return StorageService(url=f"{BASE_URL}/", service_role_key="service_key")


@pytest.mark.asyncio
async def test_upload_posts_bytes_with_upsert(storage):
    mock_post = AsyncMock(return_value=_response(200, "POST", json={"Key": "reports/reports/a.json"}))
    with patch("httpx.AsyncClient.post", new=mock_post):
        result = await storage.upload_bytes(b"{}", "reports", "reports/a.json", content_type="application/json")

    assert result == {"Key": "reports/reports/a.json"}
    args, kwargs = mock_post.call_args
    assert args[0] == f"{BASE_URL}/storage/v1/object/reports/reports/a.json"
    assert kwargs["headers"]["x-upsert"] == "true"
    assert kwargs["headers"]["Authorization"] == "Bearer service_key"
    assert kwargs["content"] == b"{}"


@pytest.mark.asyncio
async def test_upload_failure_raises(storage):
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(500, "POST", text="boom"))):
        with pytest.raises(StorageError):
            await storage.upload_bytes(b"x", "uploads", "a.pdf")


@pytest.mark.asyncio
async def test_download_returns_content(storage):
    with patch("httpx.AsyncClient.get", new=AsyncMock(return_value=_response(200, content=b"%PDF-1.7"))):
        assert await storage.download_bytes("uploads", "a.pdf") == b"%PDF-1.7"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        _response(404, text="missing"),
        _response(400, json={"statusCode": "404", "error": "not_found", "message": "Object not found"}),
    ],
)
async def test_download_missing_object(storage, response):
    with patch("httpx.AsyncClient.get", new=AsyncMock(return_value=response)):
        with pytest.raises(ObjectNotFoundError):
            await storage.download_bytes("reports", "reports/missing.json")


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(storage):
    with patch("httpx.AsyncClient.get", new=AsyncMock(side_effect=httpx.ConnectError("refused"))):
        with pytest.raises(StorageError) as exc_info:
            await storage.download_bytes("uploads", "a.pdf")
    assert not isinstance(exc_info.value, ObjectNotFoundError)


@pytest.mark.asyncio
async def test_list_skips_folders(storage):
    entries = [
        {"name": "nested", "id": None},
        {"name": "a.pdf", "id": "1"},
        {"name": "b.pdf", "id": "2"},
    ]
    mock_post = AsyncMock(return_value=_response(200, "POST", json=entries))
    with patch("httpx.AsyncClient.post", new=mock_post):
        paths = await storage.list_objects("uploads", "/bundle-1/")

    assert paths == ["bundle-1/a.pdf", "bundle-1/b.pdf"]
    assert mock_post.call_args.kwargs["json"]["prefix"] == "bundle-1"


@pytest.mark.asyncio
async def test_delete_missing_object(storage):
    with patch("httpx.AsyncClient.delete", new=AsyncMock(return_value=_response(404, "DELETE"))):
        with pytest.raises(ObjectNotFoundError):
            await storage.delete_object("reports", "reports/a.json")
