"""Embedding provider abstraction with batching and rate-limit backoff.

Three interchangeable providers share one capability set
(``embed``, ``embed_batch``, ``dimension``):

- ``OpenAIEmbedding``: large batches through the OpenAI SDK
- ``VoyageEmbedding``: small batches over HTTP, re-ordered by response index
- ``OllamaEmbedding``: a local server without batch support, one call per text

The provider is chosen once by ``create_embedding_provider`` from configuration.
Its dimension is fixed at construction from a static model lookup.
"""

import asyncio
import functools
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

import httpx
import openai
from loguru import logger
from openai import NOT_GIVEN, AsyncOpenAI

from docsearch.config import EmbeddingsConfig
from docsearch.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    NoEmbeddingsReturnedError,
)

T = TypeVar("T")

# OpenAI
OPENAI_DEFAULT_MODEL = "text-embedding-3-large"
OPENAI_DEFAULT_DIMENSION = 3072
OPENAI_MAX_BATCH_SIZE = 2048
OPENAI_MODEL_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}

# Voyage AI
VOYAGE_DEFAULT_URL = "https://api.voyageai.com/v1/embeddings"
VOYAGE_DEFAULT_MODEL = "voyage-3"
VOYAGE_DEFAULT_DIMENSION = 1024
VOYAGE_MAX_BATCH_SIZE = 128
VOYAGE_MODEL_DIMENSIONS = {
    "voyage-3": 1024,
    "voyage-code-3": 1024,
    "voyage-3-lite": 512,
    "voyage-large-2": 1536,
    "voyage-2": 1536,
    "voyage-code-2": 1536,
}

# Ollama
OLLAMA_DEFAULT_URL = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "nomic-embed-text"
OLLAMA_DEFAULT_DIMENSION = 768
OLLAMA_MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
}

REQUEST_TIMEOUT_SECONDS = 60.0

RATE_LIMIT_MARKERS = ("429", "rate limit", "rate_limit", "quota")


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff settings for rate-limited requests.

    Attributes:
        initial_delay: Seconds to wait before the first retry
        max_delay: Upper bound for any single wait
        max_retries: Retries after the first attempt (attempts = max_retries + 1)
    """

    initial_delay: float = 10.0
    max_delay: float = 120.0
    max_retries: int = 5

    def __post_init__(self) -> None:
        """Validate policy parameters."""
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")


def is_rate_limit_error(exc: BaseException) -> bool:
    """Classify an exception as a rate-limit / quota signal.

    A structured HTTP status is authoritative; the error text is only consulted
    for provider errors that carry no status (proxies, wrapped transports).

    Args:
        exc: Exception raised by a provider call

    Returns:
        True if the call should be retried after backing off
    """
    if isinstance(exc, openai.RateLimitError):
        return True

    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    if status is not None:
        return status == 429

    if not isinstance(exc, (openai.OpenAIError, httpx.HTTPError, EmbeddingProviderError)):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    description: str = "embedding request",
) -> T:
    """Run ``operation``, retrying the same call while it is rate limited.

    The wait starts at ``policy.initial_delay`` and doubles after every
    rate-limited attempt, capped at ``policy.max_delay``. Any other error is
    re-raised immediately. Waits are ``asyncio.sleep`` calls, so cancelling the
    calling task aborts a pending wait with ``asyncio.CancelledError``.

    Args:
        operation: Zero-argument coroutine factory performing one request
        policy: Backoff settings
        description: Label used in log messages

    Returns:
        The operation's result

    Raises:
        EmbeddingRateLimitError: If every attempt was rate limited
        asyncio.CancelledError: If the calling task is cancelled
    """
    delay = policy.initial_delay

    for attempt in range(policy.max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_rate_limit_error(e):
                raise
            if attempt >= policy.max_retries:
                raise EmbeddingRateLimitError(
                    f"Rate limit persisted after {policy.max_retries} retries "
                    f"for {description}",
                    context=str(e),
                ) from e

            logger.warning(
                f"Rate limit hit for {description}, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{policy.max_retries})"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, policy.max_delay)

    raise RuntimeError("Exhausted all retry attempts")


def _batched(texts: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(texts), size):
        yield texts[start : start + size]


class EmbeddingProvider(Protocol):
    """Protocol for embedding provider implementations."""

    @property
    def dimension(self) -> int:
        """Length of every vector this provider returns."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding for a single text.

        Args:
            text: Input text

        Returns:
            Embedding vector

        Raises:
            NoEmbeddingsReturnedError: If the provider returned nothing
        """
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for many texts.

        Args:
            texts: Input texts (any length; split into provider batches)

        Returns:
            Embedding vectors in the same order as ``texts``; ``[]`` for ``[]``
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class BaseEmbeddingProvider(ABC):
    """Shared behavior: ``embed`` is ``embed_batch([text])[0]``."""

    model: str
    _dimension: int

    @property
    def dimension(self) -> int:
        return self._dimension

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        if not vectors:
            raise NoEmbeddingsReturnedError("no embeddings returned", context=self.model)
        return vectors[0]

    @abstractmethod
    async def aclose(self) -> None: ...


class OpenAIEmbedding(BaseEmbeddingProvider):
    """OpenAI embedding provider with batching and rate-limit backoff.

    Batches of up to 2048 inputs are sent per request with an explicit
    ``dimensions`` field. The SDK's own retries are disabled so that
    ``call_with_backoff`` alone decides what is retried.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = OPENAI_DEFAULT_MODEL,
        base_url: str | None = None,
        backoff: BackoffPolicy | None = None,
        batch_size: int = OPENAI_MAX_BATCH_SIZE,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (required)
            model: Embedding model name
            base_url: Optional proxy or OpenAI-compatible endpoint
            backoff: Retry policy for rate limits
            batch_size: Maximum inputs per request
            timeout_seconds: Per-request timeout

        Raises:
            ConfigurationError: If the API key is missing
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")

        self.model = model or OPENAI_DEFAULT_MODEL
        self._dimension = OPENAI_MODEL_DIMENSIONS.get(self.model, OPENAI_DEFAULT_DIMENSION)
        self.backoff = backoff or BackoffPolicy()
        self.batch_size = min(batch_size, OPENAI_MAX_BATCH_SIZE)
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout_seconds,
            max_retries=0,
        )

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings batch by batch, backing off on rate limits.

        Args:
            texts: Input texts

        Returns:
            Embedding vectors in input order

        Raises:
            EmbeddingRateLimitError: If a batch stayed rate limited
            EmbeddingProviderError: For any other API failure (not retried)
            DimensionMismatchError: If the API returned vectors of another size
        """
        if not texts:
            return []

        embeddings: list[list[float]] = []
        for batch in _batched(texts, self.batch_size):
            try:
                vectors = await call_with_backoff(
                    functools.partial(self._create_embeddings, batch),
                    self.backoff,
                    description=f"OpenAI batch of {len(batch)}",
                )
            except openai.OpenAIError as e:
                logger.error(f"OpenAI embedding request failed: {e}")
                raise EmbeddingProviderError(
                    f"failed to create embeddings: {e}",
                    status_code=getattr(e, "status_code", None),
                ) from e
            embeddings.extend(vectors)

        return embeddings

    async def _create_embeddings(self, batch: list[str]) -> list[list[float]]:
        """Issue one embeddings request for a single batch."""
        dimensions = self._dimension if self.model.startswith("text-embedding-3") else NOT_GIVEN
        response = await self.client.embeddings.create(
            model=self.model,
            input=batch,
            dimensions=dimensions,
            encoding_format="float",
        )

        data = sorted(response.data, key=lambda item: item.index)
        embeddings = [list(item.embedding) for item in data]

        for i, emb in enumerate(embeddings):
            if len(emb) != self._dimension:
                raise DimensionMismatchError(
                    f"Expected {self._dimension} dimensions, got {len(emb)} for text {i}"
                )

        logger.debug(f"Embedded {len(batch)} texts with {self.model}")
        return embeddings

    async def aclose(self) -> None:
        await self.client.close()


class VoyageEmbedding(BaseEmbeddingProvider):
    """Voyage AI embedding provider.

    Sends batches of up to 128 documents. The service may answer out of order,
    so vectors are placed back by the ``index`` field of each response item.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = VOYAGE_DEFAULT_MODEL,
        base_url: str | None = None,
        backoff: BackoffPolicy | None = None,
        batch_size: int = VOYAGE_MAX_BATCH_SIZE,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize Voyage AI client.

        Args:
            api_key: Voyage AI API key (required)
            model: Embedding model name
            base_url: Embeddings endpoint URL
            backoff: Retry policy for rate limits
            batch_size: Maximum inputs per request
            timeout_seconds: Per-request timeout

        Raises:
            ConfigurationError: If the API key is missing
        """
        if not api_key:
            raise ConfigurationError("Voyage AI API key is required")

        self.model = model or VOYAGE_DEFAULT_MODEL
        self._dimension = VOYAGE_MODEL_DIMENSIONS.get(self.model, VOYAGE_DEFAULT_DIMENSION)
        self.url = base_url or VOYAGE_DEFAULT_URL
        self.backoff = backoff or BackoffPolicy()
        self.batch_size = min(batch_size, VOYAGE_MAX_BATCH_SIZE)
        self.client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings batch by batch, backing off on HTTP 429.

        Args:
            texts: Input texts

        Returns:
            Embedding vectors in input order

        Raises:
            EmbeddingRateLimitError: If a batch stayed rate limited
            EmbeddingProviderError: For any other failure (not retried)
        """
        if not texts:
            return []

        embeddings: list[list[float]] = []
        for batch in _batched(texts, self.batch_size):
            vectors = await call_with_backoff(
                functools.partial(self._post_batch, batch),
                self.backoff,
                description=f"Voyage AI batch of {len(batch)}",
            )
            embeddings.extend(vectors)

        return embeddings

    async def _post_batch(self, batch: list[str]) -> list[list[float]]:
        """Issue one request for a single batch and reassemble it by index."""
        payload = {"input": batch, "model": self.model, "input_type": "document"}
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"failed to send request to Voyage AI: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise EmbeddingProviderError(
                f"Voyage AI API error (status {response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        try:
            body: dict[str, Any] = response.json()
            data = body["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingProviderError(f"failed to decode Voyage AI response: {e}") from e

        if not data:
            raise NoEmbeddingsReturnedError("no embeddings returned", context=self.model)

        ordered: list[list[float] | None] = [None] * len(batch)
        for item in data:
            index = item.get("index")
            if not isinstance(index, int) or not 0 <= index < len(batch):
                raise EmbeddingProviderError(f"Voyage AI returned out-of-range index {index!r}")
            ordered[index] = [float(v) for v in item["embedding"]]

        missing = [i for i, vector in enumerate(ordered) if vector is None]
        if missing:
            raise EmbeddingProviderError(
                f"Voyage AI response is missing embeddings for inputs {missing}"
            )

        usage = body.get("usage") or {}
        logger.debug(
            f"Embedded {len(batch)} texts with {self.model} "
            f"({usage.get('total_tokens', 'unknown')} tokens)"
        )
        return [vector for vector in ordered if vector is not None]

    async def aclose(self) -> None:
        await self.client.aclose()


class OllamaEmbedding(BaseEmbeddingProvider):
    """Local Ollama embedding provider.

    Ollama has no batch endpoint, so ``embed_batch`` embeds texts one at a time
    and stops at the first failure. Local calls are not retried.
    """

    def __init__(
        self,
        model: str = OLLAMA_DEFAULT_MODEL,
        base_url: str | None = None,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize Ollama client.

        Args:
            model: Embedding model name
            base_url: Ollama server URL
            timeout_seconds: Per-request timeout
        """
        self.model = model or OLLAMA_DEFAULT_MODEL
        self._dimension = OLLAMA_MODEL_DIMENSIONS.get(self.model, OLLAMA_DEFAULT_DIMENSION)
        self.url = f"{(base_url or OLLAMA_DEFAULT_URL).rstrip('/')}/api/embeddings"
        self.client = httpx.AsyncClient(timeout=timeout_seconds)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts sequentially with one request each.

        Args:
            texts: Input texts

        Returns:
            Embedding vectors in input order

        Raises:
            EmbeddingProviderError: On the first failed request
        """
        embeddings: list[list[float]] = []
        for text in texts:
            embeddings.append(await self._request_embedding(text))
        return embeddings

    async def _request_embedding(self, text: str) -> list[float]:
        payload = {"model": self.model, "prompt": text}
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"failed to send request to Ollama: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise EmbeddingProviderError(
                f"ollama API error (status {response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        try:
            vector = response.json().get("embedding") or []
        except (ValueError, AttributeError) as e:
            raise EmbeddingProviderError(f"failed to decode Ollama response: {e}") from e

        if not vector:
            raise NoEmbeddingsReturnedError("no embeddings returned", context=self.model)
        return [float(v) for v in vector]

    async def aclose(self) -> None:
        await self.client.aclose()


def create_embedding_provider(
    config: EmbeddingsConfig, backoff: BackoffPolicy | None = None
) -> BaseEmbeddingProvider:
    """Factory function to create the configured embedding provider.

    Args:
        config: Embeddings configuration (env references already expanded)
        backoff: Optional retry policy override for the remote providers

    Returns:
        Embedding provider implementation

    Raises:
        ConfigurationError: For unknown providers or a missing API key

    Example:
        >>> config = EmbeddingsConfig(enabled=True, provider="ollama")
        >>> create_embedding_provider(config).dimension
        768
    """
    provider: BaseEmbeddingProvider
    if config.provider == "openai":
        provider = OpenAIEmbedding(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            backoff=backoff,
        )
    elif config.provider == "voyage":
        provider = VoyageEmbedding(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            backoff=backoff,
        )
    elif config.provider == "ollama":
        provider = OllamaEmbedding(model=config.model, base_url=config.base_url)
    else:
        raise ConfigurationError(f"unsupported embedding provider: {config.provider}")

    logger.info(
        f"Using {config.provider} embedding provider "
        f"(model: {provider.model}, dimension: {provider.dimension})"
    )
    return provider
