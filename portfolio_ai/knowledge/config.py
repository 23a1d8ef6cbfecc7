"""Tunable constants for scoring, reranking and orchestration.

The defaults are empirically chosen; deployments override them through
``Settings`` rather than editing code.
"""

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from portfolio_ai.core.config import Settings


class FallbackWeights(BaseModel):
    """Weights of the lexical fallback score. They sum to 1 by default."""

    model_config = ConfigDict(frozen=True)

    keyword: float = Field(default=0.6, ge=0.0)
    category: float = Field(default=0.25, ge=0.0)
    priority: float = Field(default=0.15, ge=0.0)
    min_term_length: int = Field(default=3, ge=1)
    # Terms that match nearly every fragment, such as the owner's name.
    ignored_terms: frozenset[str] = frozenset()


class RerankWeights(BaseModel):
    """Adjustments applied by the reranker on top of the first-pass score."""

    model_config = ConfigDict(frozen=True)

    original: float = Field(default=1.0, ge=0.0)
    category_boost: float = Field(default=0.1, ge=0.0)
    keyword_boost: float = Field(default=0.03, ge=0.0)
    tag_boost: float = Field(default=0.03, ge=0.0)
    max_signal_matches: int = Field(default=3, ge=0)
    length_penalty: float = Field(default=0.05, ge=0.0)
    short_content_chars: int = Field(default=40, ge=0)
    long_content_chars: int = Field(default=2000, ge=1)
    exploration_penalty: float = Field(default=0.03, ge=0.0)
    exploration_threshold: int = Field(default=200, ge=1)


class RetrievalConfig(BaseModel):
    """Everything the smart retriever needs besides its collaborators."""

    model_config = ConfigDict(frozen=True)

    dimensions: int = Field(default=768, ge=1)
    embedding_timeout_seconds: float = Field(default=8.0, gt=0)
    vector_search_timeout_seconds: float = Field(default=8.0, gt=0)
    vector_candidate_factor: int = Field(default=10, ge=1)
    candidate_multiplier: int = Field(default=2, ge=1)
    fallback: FallbackWeights = Field(default_factory=FallbackWeights)
    rerank: RerankWeights = Field(default_factory=RerankWeights)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetrievalConfig":
        return cls(
            dimensions=settings.embedding_dimensions,
            embedding_timeout_seconds=settings.embedding_timeout_seconds,
            vector_search_timeout_seconds=settings.vector_search_timeout_seconds,
            vector_candidate_factor=settings.vector_candidate_factor,
            candidate_multiplier=settings.candidate_multiplier,
            fallback=FallbackWeights(
                keyword=settings.fallback_keyword_weight,
                category=settings.fallback_category_weight,
                priority=settings.fallback_priority_weight,
                ignored_terms=frozenset(
                    f"{settings.owner_name} {settings.owner_short_name}".lower().split()
                ),
            ),
            rerank=RerankWeights(
                original=settings.rerank_original_weight,
                category_boost=settings.rerank_category_boost,
                keyword_boost=settings.rerank_keyword_boost,
                tag_boost=settings.rerank_tag_boost,
                length_penalty=settings.rerank_length_penalty,
                short_content_chars=settings.rerank_short_content_chars,
                long_content_chars=settings.rerank_long_content_chars,
                exploration_penalty=settings.rerank_exploration_penalty,
                exploration_threshold=settings.rerank_exploration_threshold,
            ),
        )
