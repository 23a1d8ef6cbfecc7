"""Knowledge stores: where fragments and their embeddings live.

Two implementations share one async contract:

- ``SqlKnowledgeStore``: PostgreSQL + pgvector through SQLAlchemy asyncio.
  Native HNSW index, over-fetch through ``hnsw.ef_search``.
- ``InMemoryKnowledgeStore``: numpy cosine similarity over fragments loaded
  from an index directory (``fragments.json`` + ``embeddings.npy``).
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional, Protocol, Sequence

import numpy as np
from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portfolio_ai.core.database import create_session_factory
from portfolio_ai.knowledge.embeddings import cosine_to_score, normalize_rows
from portfolio_ai.knowledge.exceptions import KnowledgeStoreUnavailable, VectorIndexUnavailable
from portfolio_ai.knowledge.models import (
    Category,
    KnowledgeFragment,
    KnowledgeStats,
    RetrievalMethod,
    RetrievalResult,
)
from portfolio_ai.models.knowledge import EMBEDDING_DIMENSIONS, KnowledgeFragmentRecord

logger = logging.getLogger(__name__)

# pgvector rejects hnsw.ef_search above this value.
MAX_EF_SEARCH = 1000


class KnowledgeStore(Protocol):
    """Read side used by the retriever, plus the writes the indexer needs."""

    dimensions: int

    async def find_active(self, category: Optional[Category] = None) -> list[KnowledgeFragment]:
        ...

    async def find_by_id(
        self, fragment_id: str, include_inactive: bool = False
    ) -> KnowledgeFragment | None:
        ...

    async def vector_search(
        self,
        query_embedding: Sequence[float],
        k: int,
        num_candidates: int,
        category: Optional[Category] = None,
    ) -> list[RetrievalResult]:
        ...

    async def increment_query_count(self, fragment_ids: Sequence[str]) -> None:
        ...

    async def upsert(self, fragment: KnowledgeFragment) -> KnowledgeFragment:
        ...

    async def stats(self, top_n: int = 5) -> KnowledgeStats:
        ...


def _check_search_args(query_embedding: Sequence[float], k: int, dimensions: int) -> None:
    if k < 1:
        raise ValueError("k must be >= 1")
    if len(query_embedding) != dimensions:
        raise ValueError(
            f"Query embedding has {len(query_embedding)} dimensions, expected {dimensions}"
        )


def _build_stats(fragments: Iterable[KnowledgeFragment], dimensions: int, top_n: int) -> KnowledgeStats:
    active = [f for f in fragments if f.is_active]
    by_category: dict[str, int] = {}
    for fragment in active:
        by_category[fragment.category.value] = by_category.get(fragment.category.value, 0) + 1

    queried = sorted(
        (f for f in active if f.query_count > 0),
        key=lambda f: (-f.query_count, f.id),
    )
    return KnowledgeStats(
        total_active=len(active),
        by_category=by_category,
        with_embeddings=sum(1 for f in active if f.has_valid_embedding(dimensions)),
        total_queries=sum(f.query_count for f in active),
        top_queried=[
            {
                "id": f.id,
                "content": f.content[:100],
                "category": f.category.value,
                "query_count": f.query_count,
            }
            for f in queried[:top_n]
        ],
    )


class InMemoryKnowledgeStore:
    """Process-local store for small corpora, tests and offline demos."""

    def __init__(
        self,
        fragments: Iterable[KnowledgeFragment] = (),
        dimensions: int = EMBEDDING_DIMENSIONS,
        vector_index: bool = True,
    ) -> None:
        self.dimensions = dimensions
        self.vector_index = vector_index
        self._fragments: dict[str, KnowledgeFragment] = {
            f.id: f.model_copy(deep=True) for f in fragments
        }

    @classmethod
    def from_index_dir(
        cls,
        index_dir: Path,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> "InMemoryKnowledgeStore":
        """Load a store saved by ``scripts/build_knowledge_index.py``."""
        from portfolio_ai.knowledge.loader import load_index

        fragments, has_embeddings = load_index(index_dir)
        logger.info(
            "Loaded %d knowledge fragments from %s (embeddings=%s)",
            len(fragments),
            index_dir,
            has_embeddings,
        )
        return cls(fragments, dimensions=dimensions, vector_index=has_embeddings)

    def __len__(self) -> int:
        return len(self._fragments)

    async def find_active(self, category: Optional[Category] = None) -> list[KnowledgeFragment]:
        return [
            f.model_copy(deep=True)
            for f in sorted(self._fragments.values(), key=lambda f: f.id)
            if f.is_active and (category is None or f.category == category)
        ]

    async def find_by_id(
        self, fragment_id: str, include_inactive: bool = False
    ) -> KnowledgeFragment | None:
        fragment = self._fragments.get(fragment_id)
        if fragment is None or (not fragment.is_active and not include_inactive):
            return None
        return fragment.model_copy(deep=True)

    async def vector_search(
        self,
        query_embedding: Sequence[float],
        k: int,
        num_candidates: int,
        category: Optional[Category] = None,
    ) -> list[RetrievalResult]:
        if not self.vector_index:
            raise VectorIndexUnavailable("In-memory store was built without a vector index")
        _check_search_args(query_embedding, k, self.dimensions)

        # Pre-filter so a category restriction cannot starve the result set.
        eligible = [
            f
            for f in self._fragments.values()
            if f.is_active
            and f.has_valid_embedding(self.dimensions)
            and (category is None or f.category == category)
        ]
        if not eligible:
            return []

        matrix = normalize_rows(np.array([f.embedding for f in eligible], dtype=np.float32))
        query = normalize_rows(np.asarray(query_embedding, dtype=np.float32).reshape(1, -1))[0]
        similarities = matrix @ query

        order = sorted(range(len(eligible)), key=lambda i: (-float(similarities[i]), eligible[i].id))
        candidates = order[: max(num_candidates, k)]

        return [
            RetrievalResult(
                fragment=eligible[i].model_copy(deep=True),
                score=cosine_to_score(similarities[i]),
                method=RetrievalMethod.VECTOR,
            )
            for i in candidates[:k]
        ]

    async def increment_query_count(self, fragment_ids: Sequence[str]) -> None:
        for fragment_id in fragment_ids:
            fragment = self._fragments.get(fragment_id)
            if fragment is not None:
                fragment.query_count += 1

    async def upsert(self, fragment: KnowledgeFragment) -> KnowledgeFragment:
        self._fragments[fragment.id] = fragment.model_copy(deep=True)
        return fragment

    async def stats(self, top_n: int = 5) -> KnowledgeStats:
        return _build_stats(self._fragments.values(), self.dimensions, top_n)


class SqlKnowledgeStore:
    """Knowledge store backed by SQLAlchemy asyncio.

    Vector search needs PostgreSQL with the pgvector extension; on any other
    dialect it raises ``VectorIndexUnavailable`` and callers fall back to
    lexical scoring over ``find_active``.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        if dimensions != EMBEDDING_DIMENSIONS:
            raise ValueError(
                f"SQL store column holds {EMBEDDING_DIMENSIONS}-dim vectors, got {dimensions}"
            )
        self.engine = engine
        self.dimensions = dimensions
        self._session_factory = session_factory or create_session_factory(engine)

    @property
    def supports_vector_index(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            raise KnowledgeStoreUnavailable(f"Knowledge store unreachable: {e}") from e

    async def find_active(self, category: Optional[Category] = None) -> list[KnowledgeFragment]:
        stmt = select(KnowledgeFragmentRecord).where(KnowledgeFragmentRecord.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(KnowledgeFragmentRecord.category == category.value)
        stmt = stmt.order_by(KnowledgeFragmentRecord.id)

        async with self._session() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()

        return [record.to_fragment() for record in records]

    async def find_by_id(
        self, fragment_id: str, include_inactive: bool = False
    ) -> KnowledgeFragment | None:
        async with self._session() as session:
            record = await session.get(KnowledgeFragmentRecord, fragment_id)

        if record is None or (not record.is_active and not include_inactive):
            return None
        return record.to_fragment()

    async def vector_search(
        self,
        query_embedding: Sequence[float],
        k: int,
        num_candidates: int,
        category: Optional[Category] = None,
    ) -> list[RetrievalResult]:
        if not self.supports_vector_index:
            raise VectorIndexUnavailable(
                f"Vector search requires PostgreSQL with pgvector, not {self.engine.dialect.name}"
            )
        _check_search_args(query_embedding, k, self.dimensions)

        distance = KnowledgeFragmentRecord.embedding.cosine_distance(list(query_embedding)).label(
            "distance"
        )
        stmt = select(KnowledgeFragmentRecord, distance).where(
            KnowledgeFragmentRecord.is_active.is_(True),
            KnowledgeFragmentRecord.embedding.is_not(None),
        )
        if category is not None:
            stmt = stmt.where(KnowledgeFragmentRecord.category == category.value)
        stmt = stmt.order_by(distance, KnowledgeFragmentRecord.id).limit(k)

        ef_search = min(max(int(num_candidates), k), MAX_EF_SEARCH)

        async with self._session() as session:
            try:
                async with session.begin():
                    await session.execute(_set_ef_search(ef_search))
                    rows = (await session.execute(stmt)).all()
            except (OperationalError, InterfaceError):
                raise
            except DBAPIError as e:
                # Missing extension, operator or index surfaces as a programming error.
                raise VectorIndexUnavailable(f"Vector search failed: {e}") from e

        return [
            RetrievalResult(
                fragment=record.to_fragment(),
                score=cosine_to_score(1.0 - float(row_distance)),
                method=RetrievalMethod.VECTOR,
            )
            for record, row_distance in rows
        ]

    async def increment_query_count(self, fragment_ids: Sequence[str]) -> None:
        if not fragment_ids:
            return
        stmt = (
            update(KnowledgeFragmentRecord)
            .where(KnowledgeFragmentRecord.id.in_(list(fragment_ids)))
            .values(query_count=KnowledgeFragmentRecord.query_count + 1)
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()

    async def upsert(self, fragment: KnowledgeFragment) -> KnowledgeFragment:
        async with self._session() as session:
            await session.merge(KnowledgeFragmentRecord.from_fragment(fragment))
            await session.commit()
        return fragment

    async def stats(self, top_n: int = 5) -> KnowledgeStats:
        active = KnowledgeFragmentRecord.is_active.is_(True)
        async with self._session() as session:
            by_category_rows = (
                await session.execute(
                    select(KnowledgeFragmentRecord.category, func.count())
                    .where(active)
                    .group_by(KnowledgeFragmentRecord.category)
                )
            ).all()
            with_embeddings = await session.scalar(
                select(func.count())
                .select_from(KnowledgeFragmentRecord)
                .where(active, KnowledgeFragmentRecord.embedding.is_not(None))
            )
            total_queries = await session.scalar(
                select(func.coalesce(func.sum(KnowledgeFragmentRecord.query_count), 0)).where(active)
            )
            top_records = (
                await session.execute(
                    select(KnowledgeFragmentRecord)
                    .where(active, KnowledgeFragmentRecord.query_count > 0)
                    .order_by(KnowledgeFragmentRecord.query_count.desc(), KnowledgeFragmentRecord.id)
                    .limit(top_n)
                )
            ).scalars().all()

        by_category = {category: count for category, count in by_category_rows}
        return KnowledgeStats(
            total_active=sum(by_category.values()),
            by_category=by_category,
            with_embeddings=with_embeddings or 0,
            total_queries=int(total_queries or 0),
            top_queried=[
                {
                    "id": r.id,
                    "content": r.content[:100],
                    "category": r.category,
                    "query_count": r.query_count,
                }
                for r in top_records
            ],
        )


def _set_ef_search(ef_search: int):
    # SET LOCAL takes no bind parameters.
    return text(f"SET LOCAL hnsw.ef_search = {int(ef_search)}")
