"""
Gallery endpoint.

- GET /api/gallery — the caller's 50 most recent generations, newest first.
  Anonymous callers get an empty list.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import select

from realify.auth.session_auth import AuthenticatedUser, get_optional_user
from realify.models.generation import GenerationHistory

logger = logging.getLogger(__name__)

router = APIRouter()

GALLERY_LIMIT = 50


def _get_db_session():
    from realify.core.database import get_session_context
    return get_session_context()


@router.get("/gallery")
async def list_gallery(user: Optional[AuthenticatedUser] = Depends(get_optional_user)):
    """List the caller's recent images."""
    if user is None:
        return {"images": []}

    with _get_db_session() as session:
        stmt = (
            select(GenerationHistory)
            .where(GenerationHistory.user_id == user.user_id)
            .order_by(GenerationHistory.created_at.desc(), GenerationHistory.id.desc())
            .limit(GALLERY_LIMIT)
        )
        rows = session.exec(stmt).all()

    return {"images": [row.to_dict() for row in rows]}
