"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

import re
from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider instance must be used for both indexing and querying
    to ensure consistent vectors.

    Example implementation:
        class SentenceTransformerEmbedding:
            def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
                from sentence_transformers import SentenceTransformer
                self.model = SentenceTransformer(model_name)

            @property
            def dimension(self) -> int:
                return self.model.get_sentence_embedding_dimension()

            def embed(self, text: str) -> list[float]:
                return self.model.encode(text).tolist()

            def embed_batch(self, texts: list[str]) -> list[list[float]]:
                return self.model.encode(texts).tolist()
    """

    @property
    def dimension(self) -> int:
        """The dimensionality of the embedding vectors."""
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per input text, in input order
        """
        ...


# -----------------------------------------------------------------------------
# Text Generation (time parsing, summarization)
# -----------------------------------------------------------------------------

@runtime_checkable
class GenerationProvider(Protocol):
    """
    Sends a system+user prompt to an LLM and returns its text.

    Used both for natural-language time parsing and for answering queries
    over retrieved activity. Implementations should raise on transport
    errors and timeouts; callers decide how to degrade.
    """

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1024,
    ) -> str | None:
        """
        Args:
            system: System prompt
            user: User prompt
            max_tokens: Maximum tokens in response

        Returns:
            Generated text, or None if the model returned nothing
        """
        ...


# -----------------------------------------------------------------------------
# Screenshot Analysis
# -----------------------------------------------------------------------------

@runtime_checkable
class VisionProvider(Protocol):
    """
    Describes an image with a vision-capable model.

    Receives raw image bytes and an instruction prompt; returns the model's
    text reply (expected to be JSON, but callers validate it).
    """

    def describe(self, image: bytes, content_type: str, prompt: str) -> str | None:
        """
        Args:
            image: Encoded image bytes
            content_type: MIME type (e.g., "image/jpeg")
            prompt: Instruction for the model

        Returns:
            Reply text, or None if the model returned nothing
        """
        ...


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences that models wrap around JSON replies."""
    return _FENCE_RE.sub("", text.strip()).strip()


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and instantiated from configuration,
    so screentrail.toml can name a provider without code changes.

    Example:
        registry = get_registry()
        provider = registry.create_embedding("sentence-transformers", {"model": "all-MiniLM-L6-v2"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._generation_providers: dict[str, type] = {}
        self._vision_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Importing the modules registers their classes; nothing is instantiated
        from . import embeddings  # noqa: F401
        from . import llm  # noqa: F401

    # Registration methods

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def register_generation(self, name: str, provider_class: type) -> None:
        """Register a text generation provider class."""
        self._generation_providers[name] = provider_class

    def register_vision(self, name: str, provider_class: type) -> None:
        """Register a vision provider class."""
        self._vision_providers[name] = provider_class

    # Factory methods

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}"
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embedding", name, self._embedding_providers, params)

    def create_generation(self, name: str, params: dict | None = None) -> GenerationProvider:
        """Create a text generation provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("generation", name, self._generation_providers, params)

    def create_vision(self, name: str, params: dict | None = None) -> VisionProvider:
        """Create a vision provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("vision", name, self._vision_providers, params)

    # Introspection

    def list_embedding_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())

    def list_generation_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._generation_providers.keys())

    def list_vision_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._vision_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
