"""
Tests for ImageStorage (Supabase Storage REST).
"""

import re
from unittest.mock import patch

import httpx
import pytest

from realify.services.image_storage import ImageStorage, StorageError

_RealAsyncClient = httpx.AsyncClient


def _mock_client(handler):
    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


@pytest.fixture
def storage():
    return ImageStorage()


class TestPaths:
    def test_object_path(self, storage):
        path = storage.object_path("user-1", "gpt", "image/webp")
        assert re.fullmatch(r"user-1/gpt-\d{13}-[0-9a-f]{8}\.webp", path)

    def test_unknown_content_type_is_png(self, storage):
        assert storage.object_path("u", "ideogram", "image/gif").endswith(".png")

    def test_paths_are_unique(self, storage):
        assert storage.object_path("u", "gpt", "image/png") != storage.object_path("u", "gpt", "image/png")

    def test_public_url(self, storage):
        assert storage.public_url("u/x.png") == (
            "https://proj.supabase.co/storage/v1/object/public/generations/u/x.png"
        )


class TestUpload:
    async def test_upload_returns_public_url(self, storage):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Key": "generations/u/x.png"})

        with patch("realify.services.image_storage.httpx.AsyncClient", _mock_client(handler)):
            url = await storage.upload(b"png-bytes", "u/x.png", "image/png")

        assert url == "https://proj.supabase.co/storage/v1/object/public/generations/u/x.png"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/generations/u/x.png"
        assert request.headers["Authorization"] == "Bearer service-role-test"
        assert request.headers["Content-Type"] == "image/png"
        assert request.headers["x-upsert"] == "false"
        assert request.content == b"png-bytes"

    async def test_upload_error_status(self, storage):
        handler = lambda request: httpx.Response(413, text="Payload too large")  # noqa: E731
        with patch("realify.services.image_storage.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(StorageError) as exc_info:
                await storage.upload(b"x", "u/x.png")
        assert exc_info.value.status_code == 413

    async def test_upload_without_service_key(self, storage):
        with patch("realify.services.image_storage.settings.supabase_service_role_key", None):
            with pytest.raises(StorageError):
                await storage.upload(b"x", "u/x.png")


class TestDownload:
    async def test_download(self, storage):
        handler = lambda request: httpx.Response(  # noqa: E731
            200, content=b"img", headers={"content-type": "image/webp; charset=binary"}
        )
        with patch("realify.services.image_storage.httpx.AsyncClient", _mock_client(handler)):
            data, content_type = await storage.download("https://replicate.delivery/x.webp")
        assert data == b"img"
        assert content_type == "image/webp"

    async def test_download_not_found(self, storage):
        handler = lambda request: httpx.Response(404)  # noqa: E731
        with patch("realify.services.image_storage.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(StorageError):
                await storage.download("https://replicate.delivery/gone.png")

    async def test_download_transport_error(self, storage):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with patch("realify.services.image_storage.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(StorageError):
                await storage.download("https://replicate.delivery/slow.png")
