"""Knowledge base module for retrieval-augmented chat.

Public data types and errors of the knowledge subsystem. The retriever,
stores and indexer live in their own modules.
"""

from portfolio_ai.knowledge.exceptions import (
    EmbeddingError,
    InvalidQueryError,
    KnowledgeError,
    KnowledgeStoreUnavailable,
    VectorIndexUnavailable,
)
from portfolio_ai.knowledge.models import (
    Category,
    KnowledgeFragment,
    Priority,
    QueryIntent,
    RetrievalMethod,
    RetrievalOptions,
    RetrievalResult,
)

__all__ = [
    "Category",
    "EmbeddingError",
    "InvalidQueryError",
    "KnowledgeError",
    "KnowledgeFragment",
    "KnowledgeStoreUnavailable",
    "Priority",
    "QueryIntent",
    "RetrievalMethod",
    "RetrievalOptions",
    "RetrievalResult",
    "VectorIndexUnavailable",
]
