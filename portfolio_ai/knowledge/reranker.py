"""Second-pass reranking of retrieval candidates."""

from typing import Optional

from portfolio_ai.knowledge.config import RerankWeights
from portfolio_ai.knowledge.models import QueryIntent, RetrievalMethod, RetrievalResult
from portfolio_ai.knowledge.scoring import ranking_key


def _signal_adjustment(
    result: RetrievalResult,
    query_lower: str,
    intent: Optional[QueryIntent],
    weights: RerankWeights,
) -> float:
    fragment = result.fragment
    content_lower = fragment.content.lower()
    adjustment = 0.0

    if intent is not None and intent.category is not None:
        if fragment.category == intent.category:
            adjustment += weights.category_boost

        keyword_matches = sum(1 for keyword in intent.keywords if keyword in content_lower)
        adjustment += weights.keyword_boost * min(keyword_matches, weights.max_signal_matches)

    tag_matches = sum(1 for tag in fragment.tags if tag and tag.lower() in query_lower)
    adjustment += weights.tag_boost * min(tag_matches, weights.max_signal_matches)

    length = len(fragment.content)
    if length < weights.short_content_chars or length > weights.long_content_chars:
        adjustment -= weights.length_penalty

    if fragment.query_count >= weights.exploration_threshold:
        adjustment -= weights.exploration_penalty

    return adjustment


def rerank(
    results: list[RetrievalResult],
    query: str,
    intent: Optional[QueryIntent] = None,
    weights: RerankWeights | None = None,
) -> list[RetrievalResult]:
    """Blend first-pass scores with signals vector distance does not capture.

    Signals: category match with the detected intent, intent keyword and tag
    mentions, a mild penalty for very short or very long fragments, and an
    exploration penalty for fragments that are already returned very often.

    The output holds exactly the input fragments, re-scored and re-sorted.
    """
    weights = weights or RerankWeights()
    query_lower = query.lower()

    reranked = []
    for result in results:
        score = weights.original * result.score + _signal_adjustment(
            result, query_lower, intent, weights
        )
        reranked.append(
            RetrievalResult(
                fragment=result.fragment,
                score=min(max(score, 0.0), 1.0),
                method=RetrievalMethod.RERANKED,
            )
        )

    reranked.sort(key=ranking_key)
    return reranked
