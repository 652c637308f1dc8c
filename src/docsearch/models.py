"""Pydantic models for document search data structures.

All records crossing the store boundary are validated against these schemas.
This ensures fail-fast behavior and type safety throughout the pipeline.
"""

import math
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class SourceDocument(BaseModel):
    """A document handed to the indexer by the scanning layer.

    Attributes:
        relative_path: Stable path of the document relative to its source root
        title: Human-readable document title
        content: Raw markdown content
        overview: First paragraph of the document's "Overview" section, if any
        source_name: Name of the source directory the document came from
    """

    relative_path: str = Field(min_length=1)
    title: str
    content: str
    overview: str = ""
    source_name: str = ""


class DocumentRecord(BaseModel):
    """A persisted document row.

    Attributes:
        id: Store-owned surrogate key
        path: Unique external identity (the document's relative path)
        title: Document title at last indexing
        content_hash: Hex digest of the raw content at last indexing
        updated_at: Timestamp of the last upsert
    """

    id: int
    path: str
    title: str
    content_hash: str
    updated_at: datetime


class EmbeddedChunk(BaseModel):
    """A chunk with its embedding, ready for insertion into the store.

    Attributes:
        document_id: Owning document id (assigned by the store when None)
        chunk_index: 0-indexed position within the document
        text: Chunk text (without the context prefix used for embedding)
        section_title: Title of the section the chunk came from
        start_offset: Approximate start offset in the source
        end_offset: Approximate end offset in the source
        embedding: Embedding vector
    """

    document_id: int | None = None
    chunk_index: int = Field(ge=0)
    text: str = Field(min_length=1)
    section_title: str = ""
    start_offset: int = Field(default=0, ge=0)
    end_offset: int = Field(default=0, ge=0)
    embedding: list[float] = Field(min_length=1)

    @field_validator("embedding")
    @classmethod
    def validate_embedding_values(cls, v: list[float]) -> list[float]:
        """Ensure embedding contains valid finite floats."""
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Embedding contains non-finite value at index {i}: {val}")
        return v


class ChunkRecord(BaseModel):
    """A chunk row read back from the store.

    Attributes:
        id: Store-owned row id
        document_id: Owning document id
        chunk_index: 0-indexed position within the document
        text: Chunk text
        section_title: Section title
        embedding: Stored vector, only populated on request
    """

    id: int
    document_id: int
    chunk_index: int
    text: str
    section_title: str = ""
    embedding: list[float] | None = None


class SearchResult(BaseModel):
    """A nearest-neighbor match joined with its document.

    Attributes:
        chunk: The matched chunk
        document: The chunk's parent document
        score: Store-reported distance (lower is more similar); an ordering
            key, not a probability
    """

    chunk: ChunkRecord
    document: DocumentRecord
    score: float


class SearchHit(BaseModel):
    """A hybrid search result as returned to callers.

    Vector-origin hits carry a score and the matching chunk; text-fallback hits
    carry neither.

    Attributes:
        document: The matching source document
        is_vector_search: True when produced by similarity search
        score: Distance of the best chunk (vector hits only)
        chunk_text: Text of the best chunk (vector hits only)
        section_title: Section of the best chunk (vector hits only)
    """

    document: SourceDocument
    is_vector_search: bool
    score: float | None = None
    chunk_text: str | None = None
    section_title: str | None = None


class IndexStats(BaseModel):
    """Statistics about the vector store.

    Attributes:
        total_documents: Number of document records
        total_chunks: Number of stored chunks
        dimension: Configured embedding dimension
    """

    total_documents: int = Field(ge=0)
    total_chunks: int = Field(ge=0)
    dimension: int = Field(ge=1)


class IndexingReport(BaseModel):
    """Outcome of indexing a batch of documents.

    Attributes:
        indexed: Paths that were (re-)embedded
        skipped: Paths that were already up to date
        failed: Paths whose indexing raised, mapped to the error message
    """

    indexed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
