"""
Image Storage — Supabase Storage over REST
==========================================

PURPOSE:
    Persists generated images to a public Supabase Storage bucket and
    returns their public URL:

        POST {supabase_url}/storage/v1/object/{bucket}/{path}
        →    {supabase_url}/storage/v1/object/public/{bucket}/{path}

    Also downloads provider-hosted images (URL results) so every image is
    re-hosted under our bucket before it is recorded in history.

CONFIGURATION (env vars with REALIFY_ prefix):
    REALIFY_SUPABASE_URL, REALIFY_SUPABASE_SERVICE_ROLE_KEY,
    REALIFY_STORAGE_BUCKET, REALIFY_STORAGE_TIMEOUT_S
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional, Tuple

import httpx

from realify.config import settings

logger = logging.getLogger(__name__)

__all__ = ["ImageStorage", "StorageError", "image_storage"]

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


class StorageError(Exception):
    """Raised when an image cannot be uploaded or downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ImageStorage:
    """Upload/download helper for the generations bucket."""

    @property
    def base_url(self) -> str:
        return settings.supabase_url.rstrip("/")

    def object_path(self, user_id: str, model: str, content_type: str) -> str:
        ext = EXTENSIONS.get(content_type, "png")
        return f"{user_id}/{model}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{settings.storage_bucket}/{path}"

    def _headers(self, content_type: str) -> dict:
        key = settings.supabase_service_role_key
        if not key:
            raise StorageError("Supabase service role key not configured")
        return {
            "Authorization": f"Bearer {key}",
            "apikey": key,
            "Content-Type": content_type,
            "x-upsert": "false",
        }

    async def upload(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """Upload ``data`` to ``path`` in the bucket and return its public URL."""
        url = f"{self.base_url}/storage/v1/object/{settings.storage_bucket}/{path}"
        headers = self._headers(content_type)

        try:
            async with httpx.AsyncClient(timeout=settings.storage_timeout_s) as client:
                response = await client.post(url, content=data, headers=headers)
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage upload request failed: {exc}") from exc

        if response.status_code >= 400:
            raise StorageError(
                f"Storage upload returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )

        logger.info("Image uploaded: path=%s bytes=%d", path, len(data))
        return self.public_url(path)

    async def download(self, url: str) -> Tuple[bytes, Optional[str]]:
        """Fetch an image by URL; returns (bytes, content type header)."""
        try:
            async with httpx.AsyncClient(timeout=settings.storage_timeout_s, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise StorageError(f"Image download failed: {exc}") from exc

        if response.status_code >= 400:
            raise StorageError(
                f"Image download returned {response.status_code}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type", "").split(";")[0].strip() or None
        return response.content, content_type


# Module-level singleton
image_storage = ImageStorage()
