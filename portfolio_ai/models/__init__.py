"""Database models for the portfolio assistant."""

from portfolio_ai.models.knowledge import EMBEDDING_DIMENSIONS, KnowledgeFragmentRecord

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "KnowledgeFragmentRecord",
]
