"""
OpenAI Image Provider
=====================

OpenAI Images API implementation of BaseImageProvider.
Uses the official openai SDK with async support:
    images.generate — prompt only
    images.edit     — prompt + reference images
"""

import base64
import logging
from typing import Any, Dict, Optional

from openai import APIError, APIStatusError, AsyncOpenAI

from realify.config import settings
from .base import (
    BaseImageProvider,
    GeneratedImage,
    GenerationRequest,
    ProviderError,
    UnusableOutputError,
)

logger = logging.getLogger(__name__)

# Aspect ratio → Images API size.
SIZES = {
    "1:1": "1024x1024",
    "3:2": "1536x1024",
    "2:3": "1024x1536",
}

# Images API names JPEG "jpeg".
OUTPUT_FORMATS = {
    "png": "png",
    "jpg": "jpeg",
    "webp": "webp",
}


class OpenAIImageProvider(BaseImageProvider):
    """
    OpenAI image provider using the official SDK.

    Supports gpt-image-1 (default). Results arrive as base64 bytes; a URL
    result is passed through for models that return one.
    """

    name = "openai"

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        if client is None:
            if not settings.openai_api_key:
                raise ProviderError(
                    "OpenAI API key not found. Set REALIFY_OPENAI_API_KEY in environment.",
                    provider="openai",
                )
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client
        self.model_name = model or settings.openai_image_model

    def build_params(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "prompt": request.prompt,
            "size": SIZES.get(request.aspect_ratio, SIZES["1:1"]),
            "quality": request.quality,
            "output_format": OUTPUT_FORMATS.get(request.output_format, "png"),
            "n": 1,
        }

    async def generate(self, request: GenerationRequest) -> GeneratedImage:
        params = self.build_params(request)
        try:
            if request.references:
                images = [(ref.filename, ref.data, ref.content_type) for ref in request.references]
                response = await self.client.images.edit(image=images, **params)
            else:
                response = await self.client.images.generate(**params)
        except APIStatusError as e:
            raise ProviderError(
                f"OpenAI API error: {str(e)}",
                provider="openai",
                status_code=e.status_code,
                original_error=e,
            )
        except APIError as e:
            raise ProviderError(
                f"OpenAI request failed: {str(e)}",
                provider="openai",
                original_error=e,
            )

        return self._to_image(response, request.content_type)

    def _to_image(self, response: Any, content_type: str) -> GeneratedImage:
        data = getattr(response, "data", None) or []
        if not data:
            raise UnusableOutputError("OpenAI returned no images", provider="openai")

        first = data[0]
        b64 = getattr(first, "b64_json", None)
        if b64:
            try:
                data = base64.b64decode(b64, validate=True)
            except ValueError as e:
                raise UnusableOutputError("OpenAI returned malformed b64_json", provider="openai", original_error=e)
            return GeneratedImage.from_bytes(data, content_type)

        url = getattr(first, "url", None)
        if url:
            return GeneratedImage.from_url(url, content_type)

        raise UnusableOutputError("OpenAI image has neither b64_json nor url", provider="openai")
