"""Explicit wiring of the vector store and embedding provider.

Components receive a ``SearchContext`` instead of reaching for shared globals.
"""

from dataclasses import dataclass
from types import TracebackType

from loguru import logger

from docsearch.config import EmbeddingsConfig
from docsearch.embedding import BackoffPolicy, EmbeddingProvider, create_embedding_provider
from docsearch.store import SQLiteVectorStore, VectorStore


@dataclass
class SearchContext:
    """The store and provider shared by the indexer and hybrid search.

    Attributes:
        store: Initialized vector store
        provider: Embedding provider whose dimension matches the store
    """

    store: VectorStore
    provider: EmbeddingProvider

    async def close(self) -> None:
        """Close the provider's network client and the store."""
        try:
            await self.provider.aclose()
        finally:
            self.store.close()

    async def __aenter__(self) -> "SearchContext":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def create_context(
    config: EmbeddingsConfig, backoff: BackoffPolicy | None = None
) -> SearchContext | None:
    """Build the provider and open the store sized to its dimension.

    The store is created at the provider's dimension; an existing database
    recorded at another dimension is migrated (wiped) during initialization.

    Args:
        config: Embeddings configuration
        backoff: Optional retry policy override for remote providers

    Returns:
        A ready SearchContext, or None when embeddings are disabled

    Raises:
        ConfigurationError: For an unknown provider or missing API key
        VectorStoreError: If the database cannot be opened
    """
    if not config.enabled:
        logger.info("Embeddings disabled; vector search unavailable")
        return None

    provider = create_embedding_provider(config, backoff=backoff)
    store = SQLiteVectorStore(config.db_path, dimension=provider.dimension)
    store.initialize()

    logger.info(f"Vector store ready at {config.db_path} (dimension {store.dimension})")
    return SearchContext(store=store, provider=provider)
