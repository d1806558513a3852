"""
Image Provider Base Class
=========================

Abstract base class, request/result types and exceptions for image
generation providers. Every adapter returns an explicit GeneratedImage
(a URL to fetch, or raw bytes) instead of a provider-shaped payload.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Union

# Substrings of provider errors that mean "overloaded, retry later".
OVERLOAD_SIGNATURES = ("e003", "unavailable", "high demand")
OVERLOAD_STATUS_CODES = (503, 529)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


class ProviderError(Exception):
    """Base exception for image provider errors."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: Optional[int] = None,
        original_error: Exception = None,
    ):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.original_error = original_error
        super().__init__(self.message)


class UnusableOutputError(ProviderError):
    """Raised when a provider succeeded but returned nothing that is an image."""
    pass


def is_overloaded(exc: ProviderError) -> bool:
    """True if the error matches a known provider-overload signature."""
    if exc.status_code in OVERLOAD_STATUS_CODES:
        return True
    text = str(exc).lower()
    return any(sig in text for sig in OVERLOAD_SIGNATURES)


@dataclass(frozen=True)
class ReferenceImage:
    """An uploaded reference image forwarded to the provider."""
    data: bytes
    content_type: str = "image/png"
    filename: str = "reference.png"


@dataclass(frozen=True)
class GenerationRequest:
    """Normalized generation input shared by all providers."""
    prompt: str
    aspect_ratio: str = "1:1"
    output_format: str = "png"
    quality: str = "auto"
    seed: Optional[int] = None
    negative_prompt: Optional[str] = None
    references: List[ReferenceImage] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.output_format, "image/png")


@dataclass(frozen=True)
class GeneratedImage:
    """Tagged provider result: ``kind`` is "url" or "bytes"."""
    kind: str
    value: Union[str, bytes]
    content_type: Optional[str] = None

    def __post_init__(self):
        if self.kind == "url" and not isinstance(self.value, str):
            raise TypeError("url result requires a str value")
        if self.kind == "bytes" and not isinstance(self.value, (bytes, bytearray)):
            raise TypeError("bytes result requires a bytes value")
        if self.kind not in ("url", "bytes"):
            raise ValueError(f"Unknown result kind: {self.kind!r}")

    @classmethod
    def from_url(cls, url: str, content_type: Optional[str] = None) -> "GeneratedImage":
        return cls(kind="url", value=url, content_type=content_type)

    @classmethod
    def from_bytes(cls, data: bytes, content_type: Optional[str] = None) -> "GeneratedImage":
        return cls(kind="bytes", value=data, content_type=content_type)


class BaseImageProvider(ABC):
    """
    Abstract base class for image generation providers.

    Implementations must:
    - translate a GenerationRequest into the provider's input
    - return exactly one GeneratedImage
    - raise ProviderError (never SDK/transport exceptions)
    """

    name: str = "unknown"

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GeneratedImage:
        """
        Generate one image.

        Raises:
            ProviderError: On provider failure.
            UnusableOutputError: When the provider output holds no image.
        """
        pass
