"""Unit tests for document metadata extraction and data models."""

import math

import pytest
from pydantic import ValidationError

from docsearch.documents import extract_overview, extract_title, source_document_from_markdown
from docsearch.models import EmbeddedChunk, IndexStats, SourceDocument

GUIDE = """# Setup Guide

## Overview

Install the tools and
configure your shell.

Second paragraph is not part of the overview.

## Steps

Run make.
"""


class TestExtractTitle:
    def test_first_h1(self) -> None:
        assert extract_title(GUIDE, "fallback") == "Setup Guide"

    def test_h2_is_not_a_title(self) -> None:
        assert extract_title("## Section\n\nbody", "notes.md") == "notes.md"


class TestExtractOverview:
    """Tests for overview extraction."""

    def test_first_paragraph_joined(self) -> None:
        """Lines of the first paragraph are joined with spaces."""
        assert extract_overview(GUIDE) == "Install the tools and configure your shell."

    def test_stops_at_heading(self) -> None:
        content = "## Overview\nOne line overview.\n## Next\nbody"
        assert extract_overview(content) == "One line overview."

    def test_missing_overview(self) -> None:
        assert extract_overview("# Title\n\nNo overview here.") == ""

    def test_empty_overview_section(self) -> None:
        assert extract_overview("## Overview\n\n") == ""


class TestSourceDocumentFromMarkdown:
    def test_title_and_overview(self) -> None:
        document = source_document_from_markdown("guides/setup.md", GUIDE, source_name="docs")

        assert document.relative_path == "guides/setup.md"
        assert document.title == "Setup Guide"
        assert document.overview.startswith("Install the tools")
        assert document.source_name == "docs"

    def test_fallback_title_includes_parent(self) -> None:
        document = source_document_from_markdown("guides/setup.md", "no heading")
        assert document.title == "guides/setup.md"

    def test_fallback_title_at_root(self) -> None:
        document = source_document_from_markdown("README.md", "no heading")
        assert document.title == "README.md"


class TestModels:
    """Tests for pydantic model validation."""

    def test_source_document_requires_path(self) -> None:
        with pytest.raises(ValidationError):
            SourceDocument(relative_path="", title="t", content="c")

    def test_embedded_chunk_rejects_non_finite(self) -> None:
        with pytest.raises(ValidationError, match="non-finite value at index 1"):
            EmbeddedChunk(chunk_index=0, text="text", embedding=[0.1, math.nan])

    def test_embedded_chunk_requires_embedding(self) -> None:
        with pytest.raises(ValidationError):
            EmbeddedChunk(chunk_index=0, text="text", embedding=[])

    def test_index_stats_bounds(self) -> None:
        with pytest.raises(ValidationError):
            IndexStats(total_documents=-1, total_chunks=0, dimension=8)
