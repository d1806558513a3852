"""
Replicate Image Providers
=========================

Runs Replicate-hosted models over the HTTP API with httpx:

    POST {base}/models/{owner}/{name}/predictions   (Prefer: wait=N)
    GET  urls.get                                    (until terminal)

The prediction output is turned into a GeneratedImage once, here:
a URL string, a list whose first item is a URL, a ``{"url": ...}`` object,
or a ``data:`` URI (decoded to bytes). Anything else is unusable.

Models:
    IdeogramProvider     — ideogram-ai/ideogram-v2-turbo
    GPTImageProvider     — openai/gpt-image-1.5 (reference images as data URIs)
"""

import asyncio
import base64
import logging
import time
from typing import Any, Dict, Optional

import httpx

from realify.config import settings
from .base import (
    BaseImageProvider,
    GeneratedImage,
    GenerationRequest,
    ProviderError,
    UnusableOutputError,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


def _data_uri(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def output_to_image(output: Any, content_type: Optional[str] = None) -> GeneratedImage:
    """Convert a prediction's ``output`` field into a GeneratedImage."""
    if isinstance(output, list):
        if not output:
            raise UnusableOutputError("Prediction returned an empty output list", provider="replicate")
        return output_to_image(output[0], content_type)

    if isinstance(output, dict) and isinstance(output.get("url"), str):
        return output_to_image(output["url"], content_type)

    if isinstance(output, str):
        if output.startswith(("http://", "https://")):
            return GeneratedImage.from_url(output, content_type)
        if output.startswith("data:"):
            header, _, encoded = output.partition(",")
            mime = header[5:].split(";")[0] or content_type
            try:
                return GeneratedImage.from_bytes(base64.b64decode(encoded, validate=True), mime)
            except ValueError as e:
                raise UnusableOutputError("Prediction returned a malformed data URI", provider="replicate", original_error=e)

    raise UnusableOutputError(
        f"Prediction output has no image (type={type(output).__name__})",
        provider="replicate",
    )


class ReplicateProvider(BaseImageProvider):
    """Base adapter for one Replicate model; subclasses build the model input."""

    name = "replicate"

    def __init__(self, model: str):
        self.model = model

    def build_input(self, request: GenerationRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        if not settings.replicate_api_token:
            raise ProviderError(
                "Replicate API token not found. Set REALIFY_REPLICATE_API_TOKEN in environment.",
                provider=self.name,
            )
        return {
            "Authorization": f"Bearer {settings.replicate_api_token}",
            "Content-Type": "application/json",
        }

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        raise ProviderError(
            f"Replicate HTTP {response.status_code}: {response.text[:300]}",
            provider=self.name,
            status_code=response.status_code,
        )

    def _prediction(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            prediction = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Replicate returned a non-JSON body: {response.text[:300]}",
                provider=self.name,
                status_code=response.status_code,
                original_error=e,
            )
        if not isinstance(prediction, dict):
            raise ProviderError(
                f"Replicate returned an unexpected body (type={type(prediction).__name__})",
                provider=self.name,
                status_code=response.status_code,
            )
        return prediction

    async def generate(self, request: GenerationRequest) -> GeneratedImage:
        payload = {"input": self.build_input(request)}
        output = await self._run_prediction(payload)
        return output_to_image(output, request.content_type)

    async def _run_prediction(self, payload: Dict[str, Any]) -> Any:
        headers = self._headers()
        url = f"{settings.replicate_base_url}/models/{self.model}/predictions"
        deadline = time.monotonic() + settings.replicate_timeout_s

        try:
            async with httpx.AsyncClient(timeout=settings.replicate_timeout_s) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={**headers, "Prefer": f"wait={settings.replicate_wait_s}"},
                )
                self._raise_for_status(response)
                prediction = self._prediction(response)

                while prediction.get("status") not in TERMINAL_STATUSES:
                    if time.monotonic() > deadline:
                        raise ProviderError(
                            f"Prediction {prediction.get('id')} timed out",
                            provider=self.name,
                        )
                    await asyncio.sleep(settings.replicate_poll_interval_s)
                    poll_url = (prediction.get("urls") or {}).get("get") or (
                        f"{settings.replicate_base_url}/predictions/{prediction.get('id')}"
                    )
                    response = await client.get(poll_url, headers=headers)
                    self._raise_for_status(response)
                    prediction = self._prediction(response)
        except httpx.HTTPError as e:
            raise ProviderError(f"Replicate request failed: {e}", provider=self.name, original_error=e)

        status = prediction.get("status")
        if status != "succeeded":
            raise ProviderError(
                f"Prediction {status}: {prediction.get('error') or 'no error detail'}",
                provider=self.name,
            )

        logger.info("Replicate prediction succeeded: model=%s id=%s", self.model, prediction.get("id"))
        return prediction.get("output")


class IdeogramProvider(ReplicateProvider):
    """ideogram-ai/ideogram-v2-turbo: prompt, ratio, format, seed, negative prompt."""

    def __init__(self, model: Optional[str] = None):
        super().__init__(model or settings.ideogram_model)

    def build_input(self, request: GenerationRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio,
            "output_format": request.output_format,
        }
        if request.seed is not None:
            data["seed"] = request.seed
        if request.negative_prompt:
            data["negative_prompt"] = request.negative_prompt
        return data


class GPTImageProvider(ReplicateProvider):
    """openai/gpt-image-1.5 on Replicate; always PNG."""

    def __init__(self, model: Optional[str] = None):
        super().__init__(model or settings.gpt_image_model)

    def build_input(self, request: GenerationRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio,
            "output_format": "png",
            "quality": request.quality,
        }
        if request.references:
            data["input_images"] = [
                _data_uri(ref.data, ref.content_type) for ref in request.references
            ]
        return data
