"""Async database engine, session factory and schema bootstrap."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from portfolio_ai.core.config import Settings

logger = logging.getLogger(__name__)

HNSW_INDEX_NAME = "ix_knowledge_fragments_embedding_hnsw"


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create tables, plus the pgvector extension and HNSW index on PostgreSQL.

    Other dialects get plain tables; the knowledge store then reports the
    vector index as unavailable and retrieval runs on the fallback scorer.
    """
    # Register models on Base.metadata before create_all.
    from portfolio_ai.models import KnowledgeFragmentRecord  # noqa: F401

    is_postgres = engine.dialect.name == "postgresql"

    async with engine.begin() as conn:
        if is_postgres:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
        if is_postgres:
            await conn.execute(
                text(
                    f"CREATE INDEX IF NOT EXISTS {HNSW_INDEX_NAME} "
                    "ON knowledge_fragments USING hnsw (embedding vector_cosine_ops)"
                )
            )

    logger.info("Database schema ready (dialect=%s)", engine.dialect.name)
