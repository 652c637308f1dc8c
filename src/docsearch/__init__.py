"""Retrieval-augmented search backend for markdown documentation.

This package chunks markdown documents, embeds the chunks through a pluggable
provider, stores them in SQLite with vector search, and answers queries with
similarity search plus a plain-text fallback.

Architecture:
    - chunking: Heading-aware, size-bounded chunking with overlap
    - embedding: OpenAI, Voyage AI and Ollama providers with backoff
    - store: SQLite + sqlite-vec persistence and KNN search
    - indexer: Change detection and atomic chunk replacement
    - search: Hybrid vector/text search
    - models: Pydantic schemas for documents, chunks and results

Usage:
    >>> from docsearch import DocumentIndexer, HybridSearch, create_context, load_config
    >>> config = load_config("default")
    >>> context = create_context(config.embeddings)
    >>> await DocumentIndexer(context, config.chunking).index_documents(documents)
    >>> hits = await HybridSearch(documents, context).search("install steps")
"""

__version__ = "0.1.0"

from docsearch.config import DocSearchConfig, load_config
from docsearch.context import SearchContext, create_context
from docsearch.indexer import DocumentIndexer
from docsearch.models import DocumentRecord, SearchHit, SearchResult, SourceDocument
from docsearch.search import HybridSearch

__all__ = [
    "DocSearchConfig",
    "DocumentIndexer",
    "DocumentRecord",
    "HybridSearch",
    "SearchContext",
    "SearchHit",
    "SearchResult",
    "SourceDocument",
    "create_context",
    "load_config",
]
