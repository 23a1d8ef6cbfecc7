"""Embedding providers for knowledge fragments and queries.

Supports Google (text-embedding-004) and OpenAI (text-embedding-3-small) models.
Both are treated as unreliable: every call either returns a vector of the
configured dimensionality or raises ``EmbeddingError``.
"""

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from portfolio_ai.knowledge.exceptions import EmbeddingError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from portfolio_ai.core.config import Settings
    from portfolio_ai.observability import MetricsBackend

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 768


class EmbeddingProvider(Protocol):
    """Contract for anything that turns text into a fixed-length vector."""

    name: str
    dimensions: int

    async def embed(self, text: str, *, for_query: bool = True) -> list[float]:
        ...


def validate_embedding(values: Any, dimensions: int) -> list[float]:
    """Coerce a provider response into a list of floats of the right length.

    Raises:
        EmbeddingError: If the response is missing, has the wrong length or
            contains non-finite values.
    """
    if values is None:
        raise EmbeddingError("Embedding response contained no values")

    try:
        vector = [float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding response is not numeric: {e}") from e

    if len(vector) != dimensions:
        raise EmbeddingError(
            f"Invalid embedding dimensions: expected {dimensions}, got {len(vector)}"
        )
    if not all(math.isfinite(v) for v in vector):
        raise EmbeddingError("Embedding contains non-finite values")
    return vector


def normalize_rows(matrix: "NDArray[np.float32]") -> "NDArray[np.float32]":
    """L2-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_to_score(cosine: float) -> float:
    """Map cosine similarity in [-1, 1] to a relevance score in [0, 1]."""
    return min(max((1.0 + float(cosine)) / 2.0, 0.0), 1.0)


class _BaseEmbeddingProvider:
    name = "base"

    def __init__(
        self,
        model: str,
        dimensions: int = DEFAULT_DIMENSIONS,
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._metrics = metrics

    async def embed(self, text: str, *, for_query: bool = True) -> list[float]:
        """Embed one text.

        Args:
            text: Text to embed.
            for_query: Use the query-side task type where the provider has one.

        Returns:
            Embedding vector with ``self.dimensions`` floats.

        Raises:
            EmbeddingError: On empty input, provider failure or malformed output.
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        start_time = time.perf_counter()
        status_code = 500
        try:
            values = await self._request(text, for_query)
            vector = validate_embedding(values, self.dimensions)
            status_code = 200
            return vector
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if self._metrics is not None:
                self._metrics.observe_external_api(self.name, "embed", status_code, duration_ms)
            logger.debug(
                "Embedding %s/%s status=%s duration_ms=%.2f",
                self.name,
                self.model,
                status_code,
                duration_ms,
            )

    async def _request(self, text: str, for_query: bool) -> Any:
        raise NotImplementedError


class GoogleEmbeddingProvider(_BaseEmbeddingProvider):
    """Google text-embedding-004 (768 dimensions)."""

    name = "google"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-004",
        dimensions: int = DEFAULT_DIMENSIONS,
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        super().__init__(model, dimensions, metrics)
        self._api_key = api_key

    async def _request(self, text: str, for_query: bool) -> Any:
        import google.generativeai as genai

        if self._api_key:
            genai.configure(api_key=self._api_key)

        task_type = "retrieval_query" if for_query else "retrieval_document"
        # The SDK call is blocking; keep it off the event loop so timeouts work.
        result = await asyncio.to_thread(
            genai.embed_content,
            model=f"models/{self.model}",
            content=text,
            task_type=task_type,
        )
        return result.get("embedding") if isinstance(result, dict) else None


class OpenAIEmbeddingProvider(_BaseEmbeddingProvider):
    """OpenAI text-embedding-3-small, shortened to the configured dimensions."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dimensions: int = DEFAULT_DIMENSIONS,
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        super().__init__(model, dimensions, metrics)
        self._api_key = api_key
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self._api_key) if self._api_key else AsyncOpenAI()
        return self._client

    async def _request(self, text: str, for_query: bool) -> Any:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions,
        )
        if not response.data:
            return None
        return response.data[0].embedding


def create_embedding_provider(
    settings: "Settings",
    metrics: "MetricsBackend | None" = None,
) -> EmbeddingProvider | None:
    """Build the configured provider, or None when it has no credentials."""
    if settings.embedding_provider == "google":
        if not settings.google_ai_api_key:
            return None
        return GoogleEmbeddingProvider(
            api_key=settings.google_ai_api_key,
            model=settings.google_embedding_model,
            dimensions=settings.embedding_dimensions,
            metrics=metrics,
        )
    elif settings.embedding_provider == "openai":
        if not settings.openai_api_key:
            return None
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            dimensions=settings.embedding_dimensions,
            metrics=metrics,
        )
    else:
        raise ValueError(f"Unsupported embedding provider: {settings.embedding_provider}")
