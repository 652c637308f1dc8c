"""Hybrid search: vector similarity first, plain-text scan as a fallback."""

from collections.abc import Iterable, Sequence

from loguru import logger

from docsearch.config import SearchConfig
from docsearch.context import SearchContext
from docsearch.models import SearchHit, SearchResult, SourceDocument


def deduplicate_by_document(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Keep the first result per document path.

    Results arrive best-first, so the first occurrence is each document's
    best-scoring chunk.
    """
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        if result.document.path in seen:
            continue
        seen.add(result.document.path)
        unique.append(result)
    return unique


def text_search(documents: Iterable[SourceDocument], query: str) -> list[SearchHit]:
    """Case-insensitive substring match over title, content and overview.

    Args:
        documents: Documents held in memory
        query: Search text

    Returns:
        Unscored hits in document order
    """
    needle = query.lower()
    return [
        SearchHit(document=document, is_vector_search=False)
        for document in documents
        if needle in document.title.lower()
        or needle in document.content.lower()
        or needle in document.overview.lower()
    ]


class HybridSearch:
    """Semantic search over indexed chunks with a text-search fallback.

    Vector search failures (provider errors, store errors, missing context)
    are never surfaced; the in-memory text scan answers instead.
    """

    def __init__(
        self,
        documents: Sequence[SourceDocument],
        context: SearchContext | None = None,
        config: SearchConfig | None = None,
    ):
        """Initialize hybrid search.

        Args:
            documents: In-memory documents used for result hydration and fallback
            context: Store and provider, or None when embeddings are disabled
            config: Search limits
        """
        self.documents = documents
        self.context = context
        self.config = config or SearchConfig()

    async def search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        """Search documents, preferring vector similarity.

        Args:
            query: Search text
            limit: Maximum nearest chunks to consider (clamped to the config)

        Returns:
            One hit per document; vector hits ordered best-first
        """
        query = query.strip()
        if not query:
            return []

        if self.context is not None:
            try:
                return await self.vector_search(query, limit)
            except Exception as e:
                logger.warning(f"Vector search failed, falling back to text search: {e}")

        return text_search(self.documents, query)

    async def vector_search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        """Embed the query and return one hit per matching document.

        Raises:
            RuntimeError: If no search context is configured
            EmbeddingError: If the query cannot be embedded
            VectorStoreError: If the store query fails
        """
        if self.context is None:
            raise RuntimeError("Vector search requires a search context")

        query_embedding = await self.context.provider.embed(query)
        results = self.context.store.search(query_embedding, self.config.clamp_limit(limit))

        by_path = {document.relative_path: document for document in self.documents}
        hits = []
        for result in deduplicate_by_document(results):
            document = by_path.get(result.document.path)
            if document is None:
                logger.debug(f"Skipping result for unknown document {result.document.path}")
                continue
            hits.append(
                SearchHit(
                    document=document,
                    is_vector_search=True,
                    score=result.score,
                    chunk_text=result.chunk.text,
                    section_title=result.chunk.section_title,
                )
            )
        return hits
