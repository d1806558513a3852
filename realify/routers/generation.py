"""
Image generation endpoints.

- POST /api/realify          — Ideogram v2 Turbo (JSON body)
- POST /api/gpt              — GPT Image 1.5 on Replicate (multipart, 0-3 references)
- POST /api/realify-openai   — OpenAI Images API (multipart, 1-3 references)

All routes are authenticated and metered; see GenerationService.
"""

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from realify.auth.session_auth import AuthenticatedUser, get_current_user
from realify.core.errors import GENERATION_FAILED, RealifyError
from realify.services.generation_service import (
    generation_service,
    normalize_gpt,
    normalize_ideogram,
    normalize_openai,
)
from realify.services.image_providers import (
    BaseImageProvider,
    GPTImageProvider,
    IdeogramProvider,
    OpenAIImageProvider,
    ProviderError,
    ReferenceImage,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Provider dependencies (overridable in tests)
# ---------------------------------------------------------------------------

def get_ideogram_provider() -> BaseImageProvider:
    return IdeogramProvider()


def get_gpt_provider() -> BaseImageProvider:
    return GPTImageProvider()


def get_openai_provider() -> BaseImageProvider:
    try:
        return OpenAIImageProvider()
    except ProviderError as exc:
        raise RealifyError(GENERATION_FAILED, detail=str(exc)) from exc


async def _read_references(files: Optional[List[UploadFile]]) -> List[ReferenceImage]:
    references = []
    for upload in files or []:
        data = await upload.read()
        if not data:
            continue
        references.append(
            ReferenceImage(
                data=data,
                content_type=upload.content_type or "image/png",
                filename=upload.filename or "reference.png",
            )
        )
    return references


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/realify")
async def generate_ideogram(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    provider: BaseImageProvider = Depends(get_ideogram_provider),
):
    """Generate with Ideogram. Accepts camelCase or snake_case fields."""
    generation_service.require_access(user.user_id)

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = {}
    if not isinstance(body, dict):
        body = {}

    result = await generation_service.generate(
        user.user_id, "ideogram", normalize_ideogram(body), provider
    )
    return result.to_dict()


@router.post("/gpt")
async def generate_gpt(
    prompt: Optional[str] = Form(None),
    aspectRatio: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user: AuthenticatedUser = Depends(get_current_user),
    provider: BaseImageProvider = Depends(get_gpt_provider),
):
    """Generate with GPT Image 1.5; optional reference images."""
    generation_service.require_access(user.user_id)

    gen_request = normalize_gpt(
        prompt,
        aspect_ratio=aspectRatio,
        quality=quality,
        references=await _read_references(images),
    )
    result = await generation_service.generate(user.user_id, "gpt", gen_request, provider)
    # older gpt clients read the public URL from "image"
    return {**result.to_dict(), "image": result.url}


@router.post("/realify-openai")
async def generate_openai(
    prompt: Optional[str] = Form(None),
    aspectRatio: Optional[str] = Form(None),
    outputFormat: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user: AuthenticatedUser = Depends(get_current_user),
    provider: BaseImageProvider = Depends(get_openai_provider),
):
    """Edit 1-3 reference images with the OpenAI Images API."""
    generation_service.require_access(user.user_id)

    gen_request = normalize_openai(
        prompt,
        aspect_ratio=aspectRatio,
        output_format=outputFormat,
        quality=quality,
        references=await _read_references(images),
    )
    result = await generation_service.generate(user.user_id, "openai", gen_request, provider)
    return result.to_dict()
