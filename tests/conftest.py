"""Pytest configuration and fixtures for assistant tests."""

import asyncio
import re
import zlib
from typing import AsyncGenerator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from portfolio_ai.core.config import Settings
from portfolio_ai.core.database import init_models
from portfolio_ai.knowledge.config import RetrievalConfig
from portfolio_ai.knowledge.exceptions import EmbeddingError
from portfolio_ai.knowledge.models import Category, KnowledgeFragment, Priority
from portfolio_ai.knowledge.retriever import SmartRetriever
from portfolio_ai.knowledge.store import InMemoryKnowledgeStore, SqlKnowledgeStore
from portfolio_ai.main import create_app
from portfolio_ai.observability import MetricsCollector
from portfolio_ai.services.container import assemble_services

DIMS = 768

_WORD = re.compile(r"[a-z0-9]{3,}")


def axis_vector(*axes: int, dims: int = DIMS) -> list[float]:
    """Vector with 1.0 on each given axis."""
    vector = [0.0] * dims
    for axis in axes:
        vector[axis] = 1.0
    return vector


def bag_of_words_vector(text: str, dims: int = DIMS) -> list[float]:
    """Deterministic hashed bag-of-words embedding."""
    vector = [0.0] * dims
    for word in _WORD.findall(text.lower()):
        vector[zlib.crc32(word.encode()) % dims] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbeddingProvider:
    """In-process embedding provider with scripted failures."""

    name = "fake"
    model = "fake-embedding"

    def __init__(self, dimensions: int = DIMS) -> None:
        self.dimensions = dimensions
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.delay_seconds = 0.0
        self.wrong_length = False

    async def embed(self, text: str, *, for_query: bool = True) -> list[float]:
        self.calls.append(text)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        if self.wrong_length:
            return [0.1] * (self.dimensions - 1)
        if text in self.vectors:
            return list(self.vectors[text])
        return bag_of_words_vector(text, self.dimensions)


# -------------------------------------------------------------------------
# Knowledge Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def make_fragment() -> Callable[..., KnowledgeFragment]:
    """Factory for fragments; embeds with the fake bag-of-words by default."""
    counter = {"n": 0}

    def _make(
        content: str,
        category: Category = Category.SKILLS,
        embed: bool = True,
        **overrides,
    ) -> KnowledgeFragment:
        counter["n"] += 1
        data = {
            "id": f"frag-{counter['n']:03d}",
            "content": content,
            "category": category,
            "priority": Priority.MEDIUM,
            "embedding": bag_of_words_vector(content) if embed else None,
        }
        data.update(overrides)
        return KnowledgeFragment(**data)

    return _make


@pytest.fixture
def fake_embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def failing_embedder() -> FakeEmbeddingProvider:
    provider = FakeEmbeddingProvider()
    provider.error = EmbeddingError("provider down")
    return provider


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(embedding_timeout_seconds=0.5, vector_search_timeout_seconds=0.5)


@pytest.fixture
def sample_fragments(make_fragment) -> list[KnowledgeFragment]:
    """Small corpus covering several categories."""
    return [
        make_fragment(
            "Mai has extensive frontend expertise with React, Next.js and TypeScript.",
            Category.SKILLS,
            priority=Priority.HIGH,
            tags=["react", "frontend"],
        ),
        make_fragment(
            "Mai has strong backend skills with Node.js, NestJS and PostgreSQL databases.",
            Category.SKILLS,
            tags=["backend"],
        ),
        make_fragment(
            "Mai currently works as a FullStack Developer building scalable web applications.",
            Category.EXPERIENCE,
            priority=Priority.HIGH,
        ),
        make_fragment(
            "Mai built a portfolio website with an AI assistant powered by retrieval.",
            Category.PROJECTS,
        ),
        make_fragment(
            "Mai can be reached by email or on GitHub and LinkedIn for opportunities.",
            Category.CONTACT,
            priority=Priority.HIGH,
            tags=["email", "github"],
        ),
        make_fragment(
            "This fragment about React was retired and must never be returned.",
            Category.SKILLS,
            is_active=False,
        ),
    ]


@pytest.fixture
def memory_store(sample_fragments) -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore(sample_fragments)


@pytest.fixture
def retriever(memory_store, fake_embedder, retrieval_config) -> SmartRetriever:
    return SmartRetriever(memory_store, fake_embedder, retrieval_config)


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Async in-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_store(sqlite_engine, sample_fragments) -> SqlKnowledgeStore:
    store = SqlKnowledgeStore(sqlite_engine)
    for fragment in sample_fragments:
        await store.upsert(fragment)
    return store


# -------------------------------------------------------------------------
# App Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        google_ai_api_key=None,
        openai_api_key=None,
        knowledge_store="memory",
        metrics_backend="inmemory",
        embedding_timeout_seconds=0.5,
        vector_search_timeout_seconds=0.5,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def app(test_settings, memory_store, fake_embedder, metrics) -> FastAPI:
    """FastAPI app wired to the in-memory corpus and fake embeddings."""
    services = assemble_services(
        test_settings,
        memory_store,
        embedding_provider=fake_embedder,
        language_model=None,
        metrics=metrics,
    )
    return create_app(test_settings, services=services, metrics=metrics)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
