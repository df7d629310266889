"""
Provider implementations for embeddings, text generation and vision.

Concrete providers register themselves with the global registry on import;
the registry imports them lazily on first use.
"""

from .base import (
    EmbeddingProvider,
    GenerationProvider,
    VisionProvider,
    ProviderRegistry,
    get_registry,
    strip_code_fences,
)

__all__ = [
    "EmbeddingProvider",
    "GenerationProvider",
    "VisionProvider",
    "ProviderRegistry",
    "get_registry",
    "strip_code_fences",
]
