from .base import (
    BaseImageProvider,
    GeneratedImage,
    GenerationRequest,
    ProviderError,
    ReferenceImage,
    UnusableOutputError,
    is_overloaded,
)
from .openai import OpenAIImageProvider
from .replicate import GPTImageProvider, IdeogramProvider, ReplicateProvider

__all__ = [
    "BaseImageProvider",
    "GeneratedImage",
    "GenerationRequest",
    "ProviderError",
    "ReferenceImage",
    "UnusableOutputError",
    "is_overloaded",
    "OpenAIImageProvider",
    "ReplicateProvider",
    "IdeogramProvider",
    "GPTImageProvider",
]
