"""Lexical fallback scoring.

Used when vector search is unavailable (no index, no embeddings, embedding
service down). Needs nothing but the fragments themselves.

Keyword overlap is measured against the best-matching fragment rather than
against the raw query length, so a fragment that shares a content term with
the query can clear the retrieval threshold even when the rest of the
question is filler ("Tell me about React frameworks"). A query with no
keyword hit anywhere scores only its category and priority weights.
"""

import re
from typing import AbstractSet, Iterable, Optional

from portfolio_ai.knowledge.config import FallbackWeights
from portfolio_ai.knowledge.models import (
    Category,
    KnowledgeFragment,
    RetrievalMethod,
    RetrievalResult,
)

_NON_WORD = re.compile(r"[^\w\s]")

# Question words and filler that say nothing about the topic.
STOPWORDS: frozenset[str] = frozenset(
    {
        "about", "all", "also", "and", "any", "are", "been", "but", "can",
        "could", "did", "does", "doing", "for", "from", "get", "give", "had",
        "has", "have", "her", "hers", "him", "his", "how", "into", "its",
        "just", "know", "like", "more", "most", "much", "not", "our", "out",
        "please", "really", "she", "should", "show", "some", "tell", "than",
        "that", "the", "their", "them", "then", "there", "these", "they",
        "this", "those", "too", "use", "used", "uses", "using", "very", "want",
        "was", "were", "what", "when", "where", "which", "who", "whom", "whose",
        "why", "will", "with", "would", "you", "your", "yours",
    }
)


def tokenize(
    query: str,
    min_length: int = 3,
    stopwords: AbstractSet[str] = STOPWORDS,
) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace.

    Terms shorter than ``min_length`` or listed in ``stopwords`` are dropped
    and duplicates removed (first occurrence wins).
    """
    cleaned = _NON_WORD.sub(" ", query.lower())
    terms: list[str] = []
    for term in cleaned.split():
        if len(term) >= min_length and term not in stopwords and term not in terms:
            terms.append(term)
    return terms


def keyword_hits(terms: list[str], text: str) -> int:
    """Number of terms found as substrings of ``text`` (already lowercased)."""
    return sum(1 for term in terms if term in text)


def ranking_key(result: RetrievalResult) -> tuple:
    """Sort key: score desc, then priority desc, then query_count desc, then id."""
    fragment = result.fragment
    return (-result.score, -fragment.priority.rank, -fragment.query_count, fragment.id)


def score_fragment(
    fragment: KnowledgeFragment,
    overlap: float,
    intent: Optional[Category],
    weights: FallbackWeights,
) -> float:
    category_bonus = 1.0 if intent is not None and fragment.category == intent else 0.0
    score = (
        weights.keyword * overlap
        + weights.category * category_bonus
        + weights.priority * fragment.priority.weight
    )
    return min(max(score, 0.0), 1.0)


def fallback_search(
    fragments: Iterable[KnowledgeFragment],
    query: str,
    k: int,
    category: Optional[Category] = None,
    intent: Optional[Category] = None,
    weights: FallbackWeights | None = None,
) -> list[RetrievalResult]:
    """Rank fragments by keyword overlap, intent match and priority.

    Args:
        fragments: Candidate fragments; inactive ones are skipped.
        query: Raw user query.
        k: Maximum number of results.
        category: Optional hard filter on fragment category.
        intent: Classified intent, used as a scoring bonus only.
        weights: Scoring weights.

    Returns:
        Up to ``k`` results with method ``fallback``, best first.
    """
    if k < 1:
        raise ValueError("k must be >= 1")

    weights = weights or FallbackWeights()
    terms = tokenize(
        query,
        weights.min_term_length,
        stopwords=STOPWORDS | weights.ignored_terms,
    )

    candidates: list[tuple[KnowledgeFragment, int]] = []
    for fragment in fragments:
        if not fragment.is_active:
            continue
        if category is not None and fragment.category != category:
            continue
        candidates.append((fragment, keyword_hits(terms, fragment.content.lower())))

    best_hits = max((hits for _, hits in candidates), default=0)

    results = [
        RetrievalResult(
            fragment=fragment,
            score=score_fragment(
                fragment,
                hits / best_hits if best_hits else 0.0,
                intent,
                weights,
            ),
            method=RetrievalMethod.FALLBACK,
        )
        for fragment, hits in candidates
    ]

    results.sort(key=ranking_key)
    return results[:k]
