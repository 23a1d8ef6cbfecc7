"""Builds the assistant's collaborators once per application."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from portfolio_ai.core.config import Settings
from portfolio_ai.core.database import create_engine, init_models
from portfolio_ai.knowledge.config import RetrievalConfig
from portfolio_ai.knowledge.embeddings import EmbeddingProvider, create_embedding_provider
from portfolio_ai.knowledge.loader import load_fallback_fragments, load_seed_fragments
from portfolio_ai.knowledge.models import RetrievalOptions
from portfolio_ai.knowledge.retriever import SmartRetriever
from portfolio_ai.knowledge.store import InMemoryKnowledgeStore, KnowledgeStore, SqlKnowledgeStore
from portfolio_ai.observability import MetricsBackend
from portfolio_ai.services.assistant import ChatAssembler
from portfolio_ai.services.llm import LanguageModel, create_language_model

logger = logging.getLogger(__name__)

DEFAULT_INDEX_DIR = Path(__file__).resolve().parent.parent / "knowledge" / "index"


@dataclass
class AssistantServices:
    store: KnowledgeStore
    retriever: SmartRetriever
    assembler: ChatAssembler
    embedding_provider: Optional[EmbeddingProvider] = None
    language_model: Optional[LanguageModel] = None
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.retriever.wait_for_pending_updates()
        if self.engine is not None:
            await self.engine.dispose()


def _memory_store(settings: Settings) -> InMemoryKnowledgeStore:
    index_dir = settings.knowledge_index_dir or DEFAULT_INDEX_DIR
    if (index_dir / "fragments.json").exists():
        return InMemoryKnowledgeStore.from_index_dir(index_dir, settings.embedding_dimensions)

    logger.warning(
        "Knowledge index not found at %s. Serving the seed corpus without vector search. "
        "Run scripts/build_knowledge_index.py to create the index.",
        index_dir,
    )
    return InMemoryKnowledgeStore(
        load_seed_fragments(),
        dimensions=settings.embedding_dimensions,
        vector_index=False,
    )


def assemble_services(
    settings: Settings,
    store: KnowledgeStore,
    embedding_provider: EmbeddingProvider | None = None,
    language_model: LanguageModel | None = None,
    metrics: MetricsBackend | None = None,
    engine: AsyncEngine | None = None,
) -> AssistantServices:
    """Wire already-built collaborators together."""
    retriever = SmartRetriever(
        store,
        embedding_provider,
        RetrievalConfig.from_settings(settings),
        metrics=metrics,
    )
    config = retriever.config
    assembler = ChatAssembler(
        retriever,
        language_model,
        fallback_fragments=load_fallback_fragments(),
        options=RetrievalOptions(k=settings.retrieval_k, threshold=settings.retrieval_threshold),
        owner_name=settings.owner_name,
        owner_short_name=settings.owner_short_name,
        fallback_weights=config.fallback,
    )
    return AssistantServices(
        store=store,
        retriever=retriever,
        assembler=assembler,
        embedding_provider=embedding_provider,
        language_model=language_model,
        engine=engine,
    )


async def build_services(
    settings: Settings,
    metrics: MetricsBackend | None = None,
) -> AssistantServices:
    """Create the store, providers and assembler described by ``settings``."""
    engine = None
    if settings.knowledge_store == "memory":
        store: KnowledgeStore = _memory_store(settings)
    elif settings.knowledge_store == "database":
        engine = create_engine(settings)
        try:
            await init_models(engine)
        except (SQLAlchemyError, OSError) as e:
            # The app still starts; chat serves the static fallback corpus.
            logger.error("Database initialization failed: %s", e)
        store = SqlKnowledgeStore(engine, dimensions=settings.embedding_dimensions)
    else:
        raise ValueError(f"Unsupported knowledge store: {settings.knowledge_store}")

    services = assemble_services(
        settings,
        store,
        embedding_provider=create_embedding_provider(settings, metrics),
        language_model=create_language_model(settings, metrics),
        metrics=metrics,
        engine=engine,
    )
    logger.info(
        "Assistant ready: store=%s embeddings=%s llm=%s",
        settings.knowledge_store,
        services.embedding_provider.name if services.embedding_provider else None,
        services.language_model.name if services.language_model else None,
    )
    return services
