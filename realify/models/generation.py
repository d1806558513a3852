"""Append-only record of successful image generations."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from realify.models.billing import utcnow


class GenerationHistory(SQLModel, table=True):
    __tablename__ = "image_generation_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    prompt: str
    model: str = Field(max_length=64)
    aspect_ratio: str = Field(max_length=16)
    image_url: str = Field(max_length=1024)
    created_at: datetime = Field(default_factory=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "model": self.model,
            "aspect_ratio": self.aspect_ratio,
            "image_url": self.image_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
