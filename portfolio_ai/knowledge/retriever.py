"""Smart retriever: intent, embedding, vector search or fallback, rerank.

The orchestration is a linear pipeline. The search step produces one of
three typed outcomes and the rest of the pipeline is a decision table over
them:

    VectorOutcome   -> use the vector results
    SearchFailure   -> log the reason, run the lexical fallback scorer
    FallbackOutcome -> use the fallback results

Only ``KnowledgeStoreUnavailable`` (no corpus at all) and
``InvalidQueryError`` (empty query) escape ``retrieve``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Union

from portfolio_ai.knowledge.config import RetrievalConfig
from portfolio_ai.knowledge.embeddings import EmbeddingProvider
from portfolio_ai.knowledge.exceptions import (
    EmbeddingError,
    InvalidQueryError,
    VectorIndexUnavailable,
)
from portfolio_ai.knowledge.intent import detect_intent
from portfolio_ai.knowledge.models import (
    Category,
    KnowledgeFragment,
    QueryIntent,
    RetrievalMethod,
    RetrievalOptions,
    RetrievalResult,
)
from portfolio_ai.knowledge.reranker import rerank
from portfolio_ai.knowledge.scoring import fallback_search
from portfolio_ai.knowledge.store import KnowledgeStore

if TYPE_CHECKING:
    from portfolio_ai.observability import MetricsBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorOutcome:
    results: list[RetrievalResult]


@dataclass(frozen=True)
class FallbackOutcome:
    results: list[RetrievalResult]
    reason: str


@dataclass(frozen=True)
class SearchFailure:
    """Vector path could not run; ``reason`` is a short machine-readable tag."""

    reason: str
    detail: str = ""


SearchOutcome = Union[VectorOutcome, FallbackOutcome, SearchFailure]


@dataclass
class RetrievalReport:
    """What ``retrieve`` returned and how it got there."""

    results: list[RetrievalResult]
    intent: QueryIntent
    method: RetrievalMethod
    degradation_reason: Optional[str] = None
    candidate_count: int = 0
    reranked: bool = False
    timings_ms: dict[str, float] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.degradation_reason is not None


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class SmartRetriever:
    """Retrieves the most relevant active knowledge fragments for a query.

    Collaborators are injected so tests can swap any of them:

    Args:
        store: Knowledge store holding the corpus.
        embedding_provider: Query embedder, or None to always use the
            lexical fallback.
        config: Timeouts, candidate factors and scoring weights.
        metrics: Optional metrics backend for retrieval outcomes.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_provider: EmbeddingProvider | None = None,
        config: RetrievalConfig | None = None,
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.config = config or RetrievalConfig()
        self._metrics = metrics
        self._pending_updates: set[asyncio.Task] = set()

    async def retrieve(
        self,
        query: str,
        options: RetrievalOptions | None = None,
    ) -> list[RetrievalResult]:
        """Return up to ``options.k`` results scoring at least ``options.threshold``.

        An empty list means no relevant knowledge was found; the threshold
        is never lowered to fill the result set.

        Raises:
            InvalidQueryError: If the query is empty or whitespace.
            KnowledgeStoreUnavailable: If the corpus cannot be read at all.
        """
        report = await self.retrieve_with_report(query, options)
        return report.results

    async def retrieve_with_report(
        self,
        query: str,
        options: RetrievalOptions | None = None,
    ) -> RetrievalReport:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")

        options = options or RetrievalOptions()
        start_time = time.perf_counter()
        timings: dict[str, float] = {}

        intent = detect_intent(query) if options.use_intent else QueryIntent()
        candidate_k = options.k * self.config.candidate_multiplier

        outcome = await self._vector_search(query, candidate_k, intent, timings)
        if isinstance(outcome, SearchFailure):
            logger.warning(
                "Retrieval degraded to fallback scorer: reason=%s detail=%s",
                outcome.reason,
                outcome.detail,
            )
            outcome = await self._fallback_search(query, candidate_k, intent, outcome.reason, timings)

        if isinstance(outcome, VectorOutcome):
            method = RetrievalMethod.VECTOR
            degradation_reason = None
        else:
            method = RetrievalMethod.FALLBACK
            degradation_reason = outcome.reason

        candidates = outcome.results
        results = [r for r in candidates if r.score >= options.threshold]

        reranked = False
        if options.rerank_results and results:
            results = rerank(results, query, intent, self.config.rerank)
            # Penalties may push a result below the threshold again.
            results = [r for r in results if r.score >= options.threshold]
            reranked = True

        results = results[: options.k]
        timings["total_ms"] = _elapsed_ms(start_time)

        if results:
            self._schedule_query_count_update([r.fragment.id for r in results])

        if self._metrics is not None:
            self._metrics.observe_retrieval(
                method.value, degradation_reason, len(results), timings["total_ms"]
            )

        logger.info(
            "Retrieved %d/%d fragments method=%s intent=%s reranked=%s total_ms=%.2f",
            len(results),
            len(candidates),
            method.value,
            intent.category.value if intent.category else None,
            reranked,
            timings["total_ms"],
        )

        return RetrievalReport(
            results=results,
            intent=intent,
            method=method,
            degradation_reason=degradation_reason,
            candidate_count=len(candidates),
            reranked=reranked,
            timings_ms=timings,
        )

    async def _vector_search(
        self,
        query: str,
        candidate_k: int,
        intent: QueryIntent,
        timings: dict[str, float],
    ) -> Union[VectorOutcome, SearchFailure]:
        if self.embedding_provider is None:
            return SearchFailure("no_embedding_provider")

        embed_start = time.perf_counter()
        try:
            query_embedding = await asyncio.wait_for(
                self.embedding_provider.embed(query, for_query=True),
                timeout=self.config.embedding_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SearchFailure(
                "embedding_timeout", f"exceeded {self.config.embedding_timeout_seconds}s"
            )
        except EmbeddingError as e:
            return SearchFailure("embedding_error", str(e))
        except Exception as e:
            # Providers are external code; anything they raise degrades.
            logger.exception("Unexpected embedding provider failure")
            return SearchFailure("embedding_error", str(e))
        finally:
            timings["embed_ms"] = _elapsed_ms(embed_start)

        if len(query_embedding) != self.config.dimensions:
            return SearchFailure(
                "embedding_malformed",
                f"expected {self.config.dimensions} dimensions, got {len(query_embedding)}",
            )

        search_start = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                self.store.vector_search(
                    query_embedding,
                    k=candidate_k,
                    num_candidates=candidate_k * self.config.vector_candidate_factor,
                    category=intent.category,
                ),
                timeout=self.config.vector_search_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SearchFailure(
                "vector_search_timeout", f"exceeded {self.config.vector_search_timeout_seconds}s"
            )
        except VectorIndexUnavailable as e:
            return SearchFailure("vector_index_unavailable", str(e))
        finally:
            timings["vector_search_ms"] = _elapsed_ms(search_start)

        return VectorOutcome(results)

    async def _fallback_search(
        self,
        query: str,
        candidate_k: int,
        intent: QueryIntent,
        reason: str,
        timings: dict[str, float],
    ) -> FallbackOutcome:
        start = time.perf_counter()
        fragments = await self.store.find_active()
        # The intent biases fallback scores; it does not filter them.
        results = fallback_search(
            fragments,
            query,
            candidate_k,
            intent=intent.category,
            weights=self.config.fallback,
        )
        timings["fallback_ms"] = _elapsed_ms(start)
        return FallbackOutcome(results, reason)

    async def get_context_by_category(
        self,
        category: Category,
        limit: int = 5,
    ) -> list[KnowledgeFragment]:
        """Active fragments of one category, highest priority first."""
        fragments = await self.store.find_active(category)
        fragments.sort(key=lambda f: (-f.priority.rank, -f.query_count, f.id))
        return fragments[:limit]

    def _schedule_query_count_update(self, fragment_ids: list[str]) -> None:
        task = asyncio.create_task(self.store.increment_query_count(fragment_ids))
        self._pending_updates.add(task)
        task.add_done_callback(self._on_update_done)

    def _on_update_done(self, task: asyncio.Task) -> None:
        self._pending_updates.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Failed to increment query_count: %s", error)

    async def wait_for_pending_updates(self) -> None:
        """Wait for in-flight query_count increments (shutdown and tests)."""
        if self._pending_updates:
            await asyncio.gather(*list(self._pending_updates), return_exceptions=True)
