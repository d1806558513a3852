"""
Generation Service — Metered Image Generation Pipeline
=======================================================

PURPOSE:
    Runs one generation for an authenticated user:

        access row? ──no──▶ no_subscription
        try_spend(cost) ──no match──▶ limit_reached
        provider.generate() ──▶ GeneratedImage(url | bytes)
        download (url results) ──▶ upload to storage ──▶ history row
        respond {url, model, units_spent, units_remaining}

    Units are reserved with one conditional UPDATE before the provider call
    and refunded if anything after it fails, so a failed generation never
    spends and concurrent requests cannot overspend.

NORMALIZATION:
    Unrecognized aspect ratios, formats and quality tiers are replaced by
    their defaults, never rejected. Only a missing prompt or too many
    reference images is a 400.

ERROR MAPPING:
    ProviderError matching an overload signature → servers_busy (503)
    other ProviderError / unusable output         → generation_failed (500)
    upload failure                                → storage_upload_failed (500)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from realify.config import settings
from realify.core.errors import (
    GENERATION_FAILED,
    INVALID_REQUEST,
    LIMIT_REACHED,
    NO_SUBSCRIPTION,
    SERVERS_BUSY,
    STORAGE_UPLOAD_FAILED,
    RealifyError,
)
from realify.models.generation import GenerationHistory
from realify.services.image_providers import (
    BaseImageProvider,
    GeneratedImage,
    GenerationRequest,
    ProviderError,
    ReferenceImage,
    is_overloaded,
)
from realify.services.image_storage import StorageError, image_storage
from realify.services.unit_ledger import unit_cost, unit_ledger

logger = logging.getLogger(__name__)

__all__ = [
    "GenerationResult",
    "GenerationService",
    "normalize_ideogram",
    "normalize_gpt",
    "normalize_openai",
    "generation_service",
]

IDEOGRAM_RATIOS = ("1:1", "16:9", "9:16", "4:5")
GPT_RATIOS = ("1:1", "3:2", "2:3")
OUTPUT_FORMATS = ("png", "jpg", "webp")
QUALITIES = ("low", "medium", "high", "auto")

DEFAULT_RATIO = "1:1"
DEFAULT_FORMAT = "png"
DEFAULT_QUALITY = "auto"


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _choose(value: Any, allowed: tuple, default: str) -> str:
    return value if isinstance(value, str) and value in allowed else default


def _require_prompt(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RealifyError(INVALID_REQUEST, detail="missing prompt")
    return value


def _parse_seed(value: Any) -> Optional[int]:
    """Accept an integer or a numeric string; anything else is dropped."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if number != number or number in (float("inf"), float("-inf")):
            return None
        return int(number)
    return None


def _check_references(references: List[ReferenceImage], minimum: int = 0) -> List[ReferenceImage]:
    maximum = settings.max_reference_images
    if len(references) < minimum:
        raise RealifyError(INVALID_REQUEST, detail=f"at least {minimum} reference image(s) required")
    if len(references) > maximum:
        raise RealifyError(INVALID_REQUEST, detail=f"at most {maximum} reference images allowed")
    for ref in references:
        if len(ref.data) > settings.max_reference_image_bytes:
            raise RealifyError(INVALID_REQUEST, detail=f"reference image {ref.filename} too large")
    return references


def normalize_ideogram(body: Mapping[str, Any]) -> GenerationRequest:
    """Normalize a JSON body; camelCase and snake_case keys are both accepted."""
    negative = body.get("negativePrompt", body.get("negative_prompt"))
    negative = negative.strip() if isinstance(negative, str) else ""

    return GenerationRequest(
        prompt=_require_prompt(body.get("prompt")),
        aspect_ratio=_choose(body.get("aspectRatio", body.get("aspect_ratio")), IDEOGRAM_RATIOS, DEFAULT_RATIO),
        output_format=_choose(body.get("outputFormat", body.get("output_format")), OUTPUT_FORMATS, DEFAULT_FORMAT),
        seed=_parse_seed(body.get("seed")),
        negative_prompt=negative or None,
    )


def normalize_gpt(
    prompt: Any,
    aspect_ratio: Any = None,
    quality: Any = None,
    references: Optional[List[ReferenceImage]] = None,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=_require_prompt(prompt),
        aspect_ratio=_choose(aspect_ratio, GPT_RATIOS, DEFAULT_RATIO),
        output_format="png",
        quality=_choose(quality, QUALITIES, DEFAULT_QUALITY),
        references=_check_references(references or []),
    )


def normalize_openai(
    prompt: Any,
    aspect_ratio: Any = None,
    output_format: Any = None,
    quality: Any = None,
    references: Optional[List[ReferenceImage]] = None,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=_require_prompt(prompt),
        aspect_ratio=_choose(aspect_ratio, GPT_RATIOS, DEFAULT_RATIO),
        output_format=_choose(output_format, OUTPUT_FORMATS, DEFAULT_FORMAT),
        quality=_choose(quality, QUALITIES, DEFAULT_QUALITY),
        references=_check_references(references or [], minimum=1),
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationResult:
    url: str
    model: str
    units_spent: int
    units_remaining: int

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "model": self.model,
            "units_spent": self.units_spent,
            "units_remaining": self.units_remaining,
        }


def _get_db_session():
    from realify.core.database import get_session_context
    return get_session_context()


class GenerationService:
    """Authorizes, meters and persists a single image generation."""

    def require_access(self, user_id: str) -> None:
        if not unit_ledger.has_access(user_id):
            raise RealifyError(NO_SUBSCRIPTION, detail=f"user={user_id}")

    async def generate(
        self,
        user_id: str,
        model: str,
        request: GenerationRequest,
        provider: BaseImageProvider,
    ) -> GenerationResult:
        """
        Run the pipeline for ``model`` (a key of UNIT_COSTS).

        Raises:
            RealifyError: no_subscription, limit_reached, servers_busy,
                generation_failed or storage_upload_failed.
        """
        self.require_access(user_id)

        cost = unit_cost(model, request.quality)
        if unit_ledger.try_spend(user_id, cost) is None:
            raise RealifyError(
                LIMIT_REACHED,
                detail=f"cost={cost} remaining={unit_ledger.get_remaining(user_id)}",
                context={"model": model},
            )

        try:
            url = await self._produce(user_id, model, request, provider)
        except BaseException:
            # includes cancellation when the client disconnects mid-generation
            unit_ledger.refund(user_id, cost)
            raise

        self._record_history(user_id, model, request, url)

        result = GenerationResult(
            url=url,
            model=model,
            units_spent=cost,
            units_remaining=unit_ledger.get_remaining(user_id),
        )
        logger.info(
            "Generation completed: user=%s model=%s units=%d remaining=%d",
            user_id, model, cost, result.units_remaining,
        )
        return result

    async def _produce(
        self,
        user_id: str,
        model: str,
        request: GenerationRequest,
        provider: BaseImageProvider,
    ) -> str:
        try:
            image = await provider.generate(request)
        except ProviderError as exc:
            code = SERVERS_BUSY if is_overloaded(exc) else GENERATION_FAILED
            raise RealifyError(
                code,
                detail=str(exc),
                context={"provider": exc.provider, "status_code": exc.status_code},
            ) from exc

        data, content_type = await self._materialize(image, request)

        path = image_storage.object_path(user_id, model, content_type)
        try:
            return await image_storage.upload(data, path, content_type)
        except StorageError as exc:
            raise RealifyError(STORAGE_UPLOAD_FAILED, detail=str(exc), context={"path": path}) from exc

    async def _materialize(self, image: GeneratedImage, request: GenerationRequest) -> tuple[bytes, str]:
        """Turn a tagged result into (bytes, content type)."""
        if image.kind == "bytes":
            return bytes(image.value), image.content_type or request.content_type

        try:
            data, header_type = await image_storage.download(image.value)
        except StorageError as exc:
            raise RealifyError(GENERATION_FAILED, detail=str(exc), context={"url": image.value}) from exc
        if not data:
            raise RealifyError(GENERATION_FAILED, detail="provider image is empty")

        content_type = header_type if header_type and header_type.startswith("image/") else None
        return data, content_type or image.content_type or request.content_type

    def _record_history(self, user_id: str, model: str, request: GenerationRequest, url: str) -> None:
        """Append the history row; failures are logged, never raised."""
        try:
            with _get_db_session() as session:
                session.add(
                    GenerationHistory(
                        user_id=user_id,
                        prompt=request.prompt,
                        model=model,
                        aspect_ratio=request.aspect_ratio,
                        image_url=url,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to record generation history: user=%s error=%s", user_id, exc)


# Module-level singleton
generation_service = GenerationService()
