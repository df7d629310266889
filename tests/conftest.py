"""
Shared pytest fixtures for screentrail tests.

Provides mock providers to avoid loading ML models or calling LLM APIs
during testing.
"""

import hashlib
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from screentrail.config import StoreConfig
from screentrail.index import EmbeddingIndex


_TOKEN_RE = re.compile(r"[a-z]+")


def _tokens(text: str) -> list[str]:
    # Crude stemming so "invoices" matches "invoice"
    return [t[:-1] if len(t) > 3 and t.endswith("s") else t
            for t in _TOKEN_RE.findall(text.lower())]


class MockEmbeddingProvider:
    """
    Deterministic bag-of-words embedding provider for testing.

    Each token is hashed into one of ``dimension`` buckets, so texts that
    share words are similar and texts that don't are (nearly) orthogonal.
    No ML model loading.
    """

    dimension = 1024
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        vec = [0.0] * self.dimension
        for token in _tokens(text):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        return vec

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class FixedEmbeddingProvider:
    """Returns preset vectors by exact text (zero vector for unknown text)."""

    def __init__(self, vectors: dict[str, list[float]], dimension: int = 2):
        self.vectors = vectors
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        return list(self.vectors.get(text, [0.0] * self.dimension))

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


class FailingEmbeddingProvider:
    """Embedding provider whose every call raises."""

    dimension = 8

    def embed(self, text: str) -> list[float]:
        raise RuntimeError("embedding service down")

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("embedding service down")


class MockGenerationProvider:
    """
    Scripted generation provider.

    Replies are returned in order; an Exception in the script is raised
    instead. Once the script runs out, ``default`` is returned. Every call
    is recorded as (system, user).
    """

    def __init__(self, replies: list[Any] | None = None, default: str | None = "ok"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def generate(self, system: str, user: str, *, max_tokens: int = 1024) -> str | None:
        self.calls.append((system, user))
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


class FailingGenerationProvider:
    """Generation provider that is never reachable."""

    def __init__(self):
        self.calls = 0

    def generate(self, system: str, user: str, *, max_tokens: int = 1024) -> str | None:
        self.calls += 1
        raise ConnectionError("collaborator unreachable")


class MockVisionProvider:
    """Vision provider returning a fixed analysis."""

    def __init__(self, analysis: dict | str | None = None):
        if analysis is None:
            analysis = {
                "active_app": "Editor",
                "summary": "Editing quarterly invoice spreadsheet",
                "extracted_text": "Invoice 42 total due",
                "task_category": "finance",
                "productivity_score": 8,
                "workflow_suggestions": "",
            }
        self.reply = analysis if isinstance(analysis, str) else json.dumps(analysis)
        self.calls: list[tuple[bytes, str, str]] = []

    def describe(self, image: bytes, content_type: str, prompt: str) -> str | None:
        self.calls.append((image, content_type, prompt))
        return self.reply


def make_record(summary: str, extracted_text: str, timestamp: str | None, **extra) -> dict:
    record = {"summary": summary, "extracted_text": extracted_text, **extra}
    if timestamp is not None:
        record["timestamp"] = timestamp
    return record


def write_record(directory: Path, name: str, payload: Any) -> Path:
    """Write a history file; strings are written verbatim, anything else as JSON."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return path


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def index(mock_embedding_provider):
    """Empty index over the bag-of-words embedder."""
    return EmbeddingIndex(mock_embedding_provider)


@pytest.fixture
def store_config(tmp_path):
    """Store configuration rooted in a temp directory (not written to disk)."""
    return StoreConfig(path=tmp_path / "store")


@pytest.fixture
def now():
    """Fixed "current instant": 2025-05-11 15:00 UTC."""
    return datetime(2025, 5, 11, 15, 0, tzinfo=timezone.utc)
