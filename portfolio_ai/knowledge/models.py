"""Data models for knowledge fragments and retrieval results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class Category(str, Enum):
    """Topical category of a knowledge fragment."""

    PERSONAL = "personal"
    SKILLS = "skills"
    EXPERIENCE = "experience"
    PROJECTS = "projects"
    EDUCATION = "education"
    ACHIEVEMENTS = "achievements"
    CONTACT = "contact"
    OTHER = "other"


class Priority(str, Enum):
    """Editorial priority of a fragment (low < medium < high)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @property
    def weight(self) -> float:
        """Normalized priority in [0, 1]."""
        return self.rank / (len(_PRIORITY_RANK) - 1)


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


class RetrievalMethod(str, Enum):
    """How a retrieval result was scored."""

    VECTOR = "vector"
    FALLBACK = "fallback"
    RERANKED = "reranked"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeFragment(BaseModel):
    """A single unit of knowledge about the site owner.

    Fragments are written by the admin side; the retrieval pipeline only
    reads active fragments and bumps ``query_count``.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Immutable identifier")
    content: str = Field(..., min_length=10, max_length=5000, description="Fragment text")
    embedding: Optional[list[float]] = Field(
        default=None,
        description="Embedding vector, regenerated whenever content changes",
    )
    category: Category
    priority: Priority = Priority.MEDIUM
    tags: list[str] = Field(default_factory=list)
    source: str = Field(default="manual", description="Provenance of the fragment")
    is_active: bool = True
    query_count: int = Field(default=0, ge=0)
    version: int = Field(default=1, ge=1)
    last_updated: datetime = Field(default_factory=_utcnow)

    def has_valid_embedding(self, dimensions: int) -> bool:
        """Whether the fragment can take part in vector search."""
        return self.embedding is not None and len(self.embedding) == dimensions


class RetrievalResult(BaseModel):
    """A fragment paired with its relevance score for one query."""

    fragment: KnowledgeFragment
    score: float = Field(..., ge=0.0, le=1.0, description="Normalized relevance (0-1)")
    method: RetrievalMethod

    @property
    def content(self) -> str:
        return self.fragment.content

    @property
    def category(self) -> Category:
        return self.fragment.category

    def to_source(self, max_chars: int = 200) -> dict:
        """Compact representation shown to chat users."""
        content = self.fragment.content
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        return {
            "content": content,
            "category": self.fragment.category.value,
            "score": round(self.score, 2),
        }


class QueryIntent(BaseModel):
    """Detected topical intent of a user query."""

    category: Optional[Category] = None
    keywords: list[str] = Field(default_factory=list)


class RetrievalOptions(BaseModel):
    """Per-call knobs for the smart retriever."""

    k: int = Field(default=3, ge=1)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    use_intent: bool = True
    rerank_results: bool = True


class KnowledgeStats(BaseModel):
    """Corpus statistics reported by a knowledge store."""

    total_active: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    with_embeddings: int = 0
    total_queries: int = 0
    top_queried: list[dict] = Field(default_factory=list)
