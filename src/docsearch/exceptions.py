"""Exception hierarchy for the docsearch backend.

Every error raised on purpose by this package derives from ``DocSearchError`` so
callers driving a batch of documents can log a per-document failure and move on,
while still being able to tell configuration problems, provider failures and
store failures apart.
"""

from typing import Optional


class DocSearchError(Exception):
    """Base exception for all docsearch errors.

    Args:
        message: Human-readable error description
        context: Optional object with diagnostic details (request payload,
            response body, offending path)
    """

    def __init__(self, message: str, context: Optional[object] = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context is None:
            return self.message
        return f"{self.message} (context: {self.context})"


class ConfigurationError(DocSearchError):
    """Invalid or incomplete configuration, reported at construction time."""


class EmbeddingError(DocSearchError):
    """Base class for embedding provider failures."""


class EmbeddingProviderError(EmbeddingError):
    """A provider call failed (HTTP status, transport error, malformed response).

    Attributes:
        status_code: HTTP status returned by the provider, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[object] = None,
    ):
        super().__init__(message, context=context)
        self.status_code = status_code


class EmbeddingRateLimitError(EmbeddingError):
    """The provider kept rate limiting the same batch after every retry."""


class NoEmbeddingsReturnedError(EmbeddingError):
    """A call for one input returned zero embeddings."""


class VectorStoreError(DocSearchError):
    """Persistence failure in the vector store."""


class DimensionMismatchError(VectorStoreError, ValueError):
    """A vector's length differs from the store's configured dimension.

    This is a programming-contract violation rather than a recoverable error.
    """
