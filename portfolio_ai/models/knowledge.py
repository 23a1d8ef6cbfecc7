"""Knowledge fragment persistence model."""

from datetime import datetime, timezone
from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_ai.knowledge.models import Category, KnowledgeFragment, Priority
from portfolio_ai.models.base import BaseModel

# text-embedding-004 dimensions; the pgvector column is fixed-width.
EMBEDDING_DIMENSIONS = 768


class KnowledgeFragmentRecord(BaseModel):
    """Row in ``knowledge_fragments``.

    The HNSW cosine index on ``embedding`` is created by ``init_models`` on
    PostgreSQL only.
    """

    __tablename__ = "knowledge_fragments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    content: Mapped[str] = mapped_column(Text)
    embedding: Mapped[Optional[Any]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS),
        nullable=True,
    )
    category: Mapped[str] = mapped_column(String(32), index=True)
    priority: Mapped[str] = mapped_column(String(16), default=Priority.MEDIUM.value)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    source: Mapped[str] = mapped_column(String(255), default="manual")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    query_count: Mapped[int] = mapped_column(Integer, default=0)
    version: Mapped[int] = mapped_column(Integer, default=1)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_fragment(self) -> KnowledgeFragment:
        embedding = None
        if self.embedding is not None:
            embedding = [float(v) for v in self.embedding]

        return KnowledgeFragment(
            id=self.id,
            content=self.content,
            embedding=embedding,
            category=Category(self.category),
            priority=Priority(self.priority),
            tags=list(self.tags or []),
            source=self.source,
            is_active=self.is_active,
            query_count=self.query_count or 0,
            version=self.version or 1,
            last_updated=self.last_updated or datetime.now(timezone.utc),
        )

    @classmethod
    def from_fragment(cls, fragment: KnowledgeFragment) -> "KnowledgeFragmentRecord":
        # A wrong-width vector cannot be stored; such fragments stay lexical-only.
        embedding = fragment.embedding if fragment.has_valid_embedding(EMBEDDING_DIMENSIONS) else None
        return cls(
            id=fragment.id,
            content=fragment.content,
            embedding=embedding,
            category=fragment.category.value,
            priority=fragment.priority.value,
            tags=list(fragment.tags),
            source=fragment.source,
            is_active=fragment.is_active,
            query_count=fragment.query_count,
            version=fragment.version,
            last_updated=fragment.last_updated,
        )
