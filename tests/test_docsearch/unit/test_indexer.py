"""Unit tests for the document indexing workflow.

Uses the deterministic fake provider and an in-memory store from conftest.
"""

from unittest.mock import AsyncMock

import pytest

from docsearch.context import SearchContext
from docsearch.documents import source_document_from_markdown
from docsearch.exceptions import EmbeddingError, EmbeddingProviderError
from docsearch.indexer import DocumentIndexer, build_context_text, compute_content_hash

GUIDE_V1 = """# Setup Guide

## Overview

Install the tools and configure your shell.

## Usage

Run the indexer against the docs directory.
"""

GUIDE_V2 = """# Setup Guide

## Overview

Everything now ships in a single installer binary.
"""


@pytest.fixture
def indexer(search_context: SearchContext) -> DocumentIndexer:
    return DocumentIndexer(search_context)


def test_compute_content_hash() -> None:
    """Hash is the hex SHA-256 of the raw content."""
    assert compute_content_hash("") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
    assert compute_content_hash(GUIDE_V1) != compute_content_hash(GUIDE_V2)


def test_build_context_text() -> None:
    assert build_context_text("Guide", "Install", "Run make.") == "Guide - Install\n\nRun make."
    assert build_context_text("Guide", "", "Run make.") == "Guide\n\nRun make."


class TestIndexDocument:
    """Tests for single-document indexing."""

    @pytest.mark.asyncio
    async def test_idempotent(self, indexer, fake_provider) -> None:
        """Unchanged content is embedded exactly once."""
        document = source_document_from_markdown("guide.md", GUIDE_V1)

        assert await indexer.index_document(document) is True
        assert await indexer.index_document(document) is False
        assert len(fake_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_force_reindexes(self, indexer, fake_provider) -> None:
        document = source_document_from_markdown("guide.md", GUIDE_V1)

        await indexer.index_document(document)
        assert await indexer.index_document(document, force=True) is True
        assert len(fake_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_embeds_with_title_context(self, indexer, fake_provider) -> None:
        """Each chunk is embedded with its document and section titles."""
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))

        assert fake_provider.calls == [
            [
                "Setup Guide - Overview\n\nInstall the tools and configure your shell.",
                "Setup Guide - Usage\n\nRun the indexer against the docs directory.",
            ]
        ]

    @pytest.mark.asyncio
    async def test_untitled_chunk_context(self, indexer, fake_provider) -> None:
        await indexer.index_document(
            source_document_from_markdown("notes/todo.md", "Plain notes without any heading.")
        )

        assert fake_provider.calls == [["notes/todo.md\n\nPlain notes without any heading."]]

    @pytest.mark.asyncio
    async def test_chunks_stored_with_embeddings(
        self, indexer, memory_store, fake_provider
    ) -> None:
        """Stored chunks keep the raw text and the context-text vector."""
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))

        record = memory_store.get_document("guide.md")
        assert record is not None
        assert record.title == "Setup Guide"
        assert record.content_hash == compute_content_hash(GUIDE_V1)

        chunks = memory_store.get_chunks(record.id, include_embeddings=True)
        assert [(c.chunk_index, c.section_title) for c in chunks] == [(0, "Overview"), (1, "Usage")]
        assert chunks[0].text == "Install the tools and configure your shell."
        expected = fake_provider.vector_for(
            "Setup Guide - Overview\n\nInstall the tools and configure your shell."
        )
        assert chunks[0].embedding == pytest.approx(expected, rel=1e-6)

    @pytest.mark.asyncio
    async def test_changed_content_replaces_chunks(self, indexer, memory_store) -> None:
        """Re-indexing leaves only the new chunk set."""
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))
        assert await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V2))

        record = memory_store.get_document("guide.md")
        chunks = memory_store.get_chunks(record.id)
        assert [c.text for c in chunks] == ["Everything now ships in a single installer binary."]
        assert record.content_hash == compute_content_hash(GUIDE_V2)

    @pytest.mark.asyncio
    async def test_document_without_chunks(self, indexer, memory_store, fake_provider) -> None:
        """A too-small document is recorded with no chunks and no embedding call."""
        assert await indexer.index_document(source_document_from_markdown("tiny.md", "tiny"))

        record = memory_store.get_document("tiny.md")
        assert record is not None
        assert memory_store.get_chunks(record.id) == []
        assert not memory_store.needs_update("tiny.md", compute_content_hash("tiny"))
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_shrinking_to_nothing_clears_old_chunks(self, indexer, memory_store) -> None:
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))
        await indexer.index_document(source_document_from_markdown("guide.md", "tiny"))

        record = memory_store.get_document("guide.md")
        assert memory_store.get_chunks(record.id) == []

    @pytest.mark.asyncio
    async def test_identical_content_different_paths(self, indexer, memory_store) -> None:
        """Same content under two paths gives two independent records."""
        await indexer.index_document(source_document_from_markdown("a/guide.md", GUIDE_V1))
        await indexer.index_document(source_document_from_markdown("b/guide.md", GUIDE_V1))

        first = memory_store.get_document("a/guide.md")
        second = memory_store.get_document("b/guide.md")
        assert first.id != second.id

        first_chunks = memory_store.get_chunks(first.id)
        second_chunks = memory_store.get_chunks(second.id)
        assert len(first_chunks) == len(second_chunks) == 2
        assert not {c.id for c in first_chunks} & {c.id for c in second_chunks}

        indexer.remove_document("a/guide.md")
        assert len(memory_store.get_chunks(second.id)) == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_previous_state(
        self, indexer, memory_store, fake_provider, monkeypatch
    ) -> None:
        """A failed re-index leaves the old hash and chunks in place."""
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))
        monkeypatch.setattr(
            fake_provider,
            "embed_batch",
            AsyncMock(side_effect=EmbeddingProviderError("provider down", status_code=503)),
        )

        with pytest.raises(EmbeddingProviderError):
            await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V2))

        record = memory_store.get_document("guide.md")
        assert record.content_hash == compute_content_hash(GUIDE_V1)
        assert len(memory_store.get_chunks(record.id)) == 2
        assert memory_store.needs_update("guide.md", compute_content_hash(GUIDE_V2))

    @pytest.mark.asyncio
    async def test_embedding_failure_for_new_document(
        self, indexer, memory_store, fake_provider, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            fake_provider, "embed_batch", AsyncMock(side_effect=EmbeddingProviderError("down"))
        )

        with pytest.raises(EmbeddingProviderError):
            await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))

        assert memory_store.get_document("guide.md") is None

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(self, indexer, fake_provider, monkeypatch) -> None:
        monkeypatch.setattr(fake_provider, "embed_batch", AsyncMock(return_value=[[0.0] * 8]))

        with pytest.raises(EmbeddingError, match="Expected 2 embeddings, got 1"):
            await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))


class TestIndexDocuments:
    """Tests for batch indexing."""

    @pytest.mark.asyncio
    async def test_continues_past_failures(self, indexer, fake_provider, monkeypatch) -> None:
        real_embed_batch = fake_provider.embed_batch

        async def flaky(texts: list[str]) -> list[list[float]]:
            if any("explode" in text for text in texts):
                raise EmbeddingProviderError("provider rejected input")
            return await real_embed_batch(texts)

        monkeypatch.setattr(fake_provider, "embed_batch", flaky)
        documents = [
            source_document_from_markdown("a.md", "# A\n\nFirst document body text."),
            source_document_from_markdown("b.md", "# B\n\nThis one will explode on embed."),
            source_document_from_markdown("c.md", "# C\n\nThird document body text."),
        ]

        report = await indexer.index_documents(documents)

        assert report.indexed == ["a.md", "c.md"]
        assert report.skipped == []
        assert list(report.failed) == ["b.md"]
        assert "provider rejected input" in report.failed["b.md"]

        rerun = await indexer.index_documents(documents)
        assert rerun.skipped == ["a.md", "c.md"]
        assert list(rerun.failed) == ["b.md"]

    @pytest.mark.asyncio
    async def test_force(self, indexer) -> None:
        documents = [source_document_from_markdown("a.md", "# A\n\nFirst document body text.")]

        await indexer.index_documents(documents)
        report = await indexer.index_documents(documents, force=True)

        assert report.indexed == ["a.md"]


class TestRemoveDocument:
    @pytest.mark.asyncio
    async def test_remove(self, indexer, memory_store) -> None:
        await indexer.index_document(source_document_from_markdown("guide.md", GUIDE_V1))

        assert indexer.remove_document("guide.md") is True
        assert indexer.remove_document("guide.md") is False
        assert memory_store.stats().total_chunks == 0
