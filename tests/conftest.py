"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests get a deterministic in-process embedding provider
- Stores are created fresh per test (in memory or under tmp_path)
"""

from __future__ import annotations

import hashlib
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from docsearch.context import SearchContext  # noqa: E402
from docsearch.store import SQLiteVectorStore  # noqa: E402

TEST_DIMENSION = 8


class FakeEmbeddingProvider:
    """Deterministic provider: identical texts map to identical vectors."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.closed = False

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255.0 for byte in digest[: self._dimension]]

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(text) for text in texts]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    """Deterministic embedding provider at the test dimension."""
    return FakeEmbeddingProvider()


@pytest.fixture
def memory_store() -> Iterator[SQLiteVectorStore]:
    """Initialized in-memory vector store at the test dimension."""
    store = SQLiteVectorStore(":memory:", dimension=TEST_DIMENSION)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def search_context(
    memory_store: SQLiteVectorStore, fake_provider: FakeEmbeddingProvider
) -> SearchContext:
    """Context wiring the in-memory store to the fake provider."""
    return SearchContext(store=memory_store, provider=fake_provider)
