"""
Embedding providers.

Embeddings stay local by default (sentence-transformers) for privacy and
cost: every screenshot's extracted text passes through here.
"""

import logging
import os

from .base import get_registry

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Local embeddings via sentence-transformers.

    Vectors are L2-normalized, so cosine similarity reduces to a dot
    product, but the index does not rely on that.
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: str | None = None):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "SentenceTransformerEmbedding requires 'sentence-transformers' library"
            )

        self.model_name = model
        logger.info("Loading embedding model %s", model)
        self._model = SentenceTransformer(model, device=device)

    @property
    def dimension(self) -> int:
        return self._model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        return self._model.encode(text, normalize_embeddings=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._model.encode(texts, normalize_embeddings=True).tolist()


class OpenAIEmbedding:
    """
    Embeddings via OpenAI's API.

    Requires: SCREENTRAIL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    _DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        timeout: float = 30.0,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIEmbedding requires 'openai' library")

        key = api_key or os.environ.get("SCREENTRAIL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set SCREENTRAIL_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self.model_name = model
        self._client = OpenAI(api_key=key, timeout=timeout)
        self._dimension = self._DIMENSIONS.get(model)

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension check"))
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = self._client.embeddings.create(model=self.model_name, input=texts)
        # The API may return items out of order; index restores input order
        data = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in data]


class OllamaEmbedding:
    """
    Embeddings via a local Ollama server.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        from .ollama_utils import ollama_base_url, ollama_ensure_model

        self.model_name = model
        self.timeout = timeout
        self.base_url = ollama_base_url(base_url)
        ollama_ensure_model(self.base_url, self.model_name)
        self._dimension: int | None = None

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension check"))
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        import requests

        if not texts:
            return []
        response = requests.post(
            f"{self.base_url}/api/embed",
            json={"model": self.model_name, "input": texts},
            timeout=(10, self.timeout),
        )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Ollama embedding failed (model={self.model_name}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        return response.json().get("embeddings", [])


# Register providers
_registry = get_registry()
_registry.register_embedding("sentence-transformers", SentenceTransformerEmbedding)
_registry.register_embedding("openai", OpenAIEmbedding)
_registry.register_embedding("ollama", OllamaEmbedding)
