"""Unit tests for hybrid search and result deduplication."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from docsearch.config import SearchConfig
from docsearch.context import SearchContext
from docsearch.documents import source_document_from_markdown
from docsearch.exceptions import EmbeddingProviderError, VectorStoreError
from docsearch.indexer import DocumentIndexer
from docsearch.models import ChunkRecord, DocumentRecord, SearchResult
from docsearch.search import HybridSearch, deduplicate_by_document, text_search

INSTALL = """# Installation

## Overview

Download the installer and run it once.

## Troubleshooting

Reinstall if the daemon refuses to start.
"""

BACKUPS = """# Backups

## Overview

Nightly snapshots are kept for thirty days.
"""

INSTALL_OVERVIEW_CONTEXT = "Installation - Overview\n\nDownload the installer and run it once."


def _result(path: str, score: float, chunk_id: int) -> SearchResult:
    document_id = ord(path[0])
    return SearchResult(
        chunk=ChunkRecord(
            id=chunk_id, document_id=document_id, chunk_index=0, text=f"chunk {chunk_id}"
        ),
        document=DocumentRecord(
            id=document_id, path=path, title=path, content_hash="h", updated_at=datetime.now(UTC)
        ),
        score=score,
    )


@pytest.fixture
def documents():
    return [
        source_document_from_markdown("install.md", INSTALL),
        source_document_from_markdown("ops/backups.md", BACKUPS),
    ]


@pytest_asyncio.fixture
async def indexed_context(search_context: SearchContext, documents) -> SearchContext:
    await DocumentIndexer(search_context).index_documents(documents)
    return search_context


class TestDeduplicate:
    def test_keeps_first_per_path(self) -> None:
        """[A, A, B] by ascending distance becomes [A, B] with A's best score."""
        results = [_result("A", 0.1, 1), _result("A", 0.2, 2), _result("B", 0.3, 3)]

        unique = deduplicate_by_document(results)

        assert [(r.document.path, r.score, r.chunk.id) for r in unique] == [
            ("A", 0.1, 1),
            ("B", 0.3, 3),
        ]

    def test_empty(self) -> None:
        assert deduplicate_by_document([]) == []


class TestTextSearch:
    def test_case_insensitive_match(self, documents) -> None:
        hits = text_search(documents, "SNAPSHOTS")

        assert [h.document.relative_path for h in hits] == ["ops/backups.md"]
        assert hits[0].is_vector_search is False
        assert hits[0].score is None

    def test_matches_title(self, documents) -> None:
        assert [h.document.title for h in text_search(documents, "installation")] == [
            "Installation"
        ]


class TestHybridSearch:
    """Tests for vector search with text fallback."""

    @pytest.mark.asyncio
    async def test_vector_hits_deduplicated(self, indexed_context, documents) -> None:
        hits = await HybridSearch(documents, indexed_context).search(INSTALL_OVERVIEW_CONTEXT)

        assert [h.document.relative_path for h in hits] == ["install.md", "ops/backups.md"]
        best = hits[0]
        assert best.is_vector_search is True
        assert best.score == pytest.approx(0.0, abs=1e-5)
        assert best.section_title == "Overview"
        assert best.chunk_text == "Download the installer and run it once."

    @pytest.mark.asyncio
    async def test_limit_applied(self, indexed_context, documents) -> None:
        hits = await HybridSearch(documents, indexed_context).search(
            INSTALL_OVERVIEW_CONTEXT, limit=1
        )

        assert [h.document.relative_path for h in hits] == ["install.md"]

    @pytest.mark.asyncio
    async def test_limit_clamped_to_config(self, indexed_context, documents) -> None:
        search = HybridSearch(
            documents, indexed_context, SearchConfig(default_limit=1, max_limit=1)
        )

        assert len(await search.search(INSTALL_OVERVIEW_CONTEXT, limit=50)) == 1

    @pytest.mark.asyncio
    async def test_unknown_paths_skipped(self, indexed_context, documents) -> None:
        """Store results for documents no longer held in memory are dropped."""
        hits = await HybridSearch(documents[1:], indexed_context).search(INSTALL_OVERVIEW_CONTEXT)

        assert [h.document.relative_path for h in hits] == ["ops/backups.md"]

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back(
        self, indexed_context, documents, fake_provider, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            fake_provider, "embed", AsyncMock(side_effect=EmbeddingProviderError("timeout"))
        )

        hits = await HybridSearch(documents, indexed_context).search("daemon")

        assert [h.document.relative_path for h in hits] == ["install.md"]
        assert hits[0].is_vector_search is False

    @pytest.mark.asyncio
    async def test_store_failure_falls_back(self, documents, fake_provider) -> None:
        store = MagicMock()
        store.search.side_effect = VectorStoreError("database is locked")
        context = SearchContext(store=store, provider=fake_provider)

        hits = await HybridSearch(documents, context).search("snapshots")

        assert [h.document.relative_path for h in hits] == ["ops/backups.md"]
        assert hits[0].is_vector_search is False

    @pytest.mark.asyncio
    async def test_without_context_uses_text_search(self, documents) -> None:
        hits = await HybridSearch(documents).search("installer")

        assert [h.document.relative_path for h in hits] == ["install.md"]

    @pytest.mark.asyncio
    async def test_vector_search_requires_context(self, documents) -> None:
        with pytest.raises(RuntimeError, match="requires a search context"):
            await HybridSearch(documents).vector_search("installer")

    @pytest.mark.asyncio
    async def test_empty_query(self, indexed_context, documents, fake_provider) -> None:
        calls_before = len(fake_provider.calls)

        assert await HybridSearch(documents, indexed_context).search("   ") == []
        assert len(fake_provider.calls) == calls_before
