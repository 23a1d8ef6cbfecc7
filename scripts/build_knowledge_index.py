#!/usr/bin/env python3
"""Embed the seed knowledge base and store it.

Loads ``portfolio_ai/knowledge/data/knowledge_base.json`` (or ``--seed``),
generates embeddings and writes them to an index directory for the
in-memory store and/or to the database.

Usage:
    # Index directory (KNOWLEDGE_STORE=memory)
    python scripts/build_knowledge_index.py

    # PostgreSQL + pgvector (KNOWLEDGE_STORE=database)
    python scripts/build_knowledge_index.py --database --no-index-dir

Environment variables:
    GOOGLE_AI_API_KEY: Required for Google embeddings (default)
    OPENAI_API_KEY: Required if using OpenAI embeddings
    EMBEDDING_PROVIDER: "google" (default) or "openai"
    DATABASE_URL: Target database for --database
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from portfolio_ai.core.config import get_settings
from portfolio_ai.core.database import create_engine, init_models
from portfolio_ai.knowledge.embeddings import create_embedding_provider
from portfolio_ai.knowledge.indexer import KnowledgeIndexer
from portfolio_ai.knowledge.loader import load_seed_fragments, save_index
from portfolio_ai.knowledge.store import InMemoryKnowledgeStore, SqlKnowledgeStore
from portfolio_ai.services.container import DEFAULT_INDEX_DIR

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main() -> None:
    """Build the knowledge base index."""
    parser = argparse.ArgumentParser(description="Embed and store the portfolio knowledge base")
    parser.add_argument("--seed", type=Path, help="Seed JSON file (defaults to the bundled corpus)")
    parser.add_argument("--index-dir", type=Path, help="Output index directory")
    parser.add_argument(
        "--no-index-dir",
        action="store_true",
        help="Do not write an index directory",
    )
    parser.add_argument(
        "--database",
        action="store_true",
        help="Also upsert fragments into DATABASE_URL",
    )
    args = parser.parse_args()

    settings = get_settings()
    provider = create_embedding_provider(settings)
    if provider is None:
        logger.error(
            "No API key for embedding provider '%s'. Set GOOGLE_AI_API_KEY or OPENAI_API_KEY.",
            settings.embedding_provider,
        )
        sys.exit(1)

    fragments = load_seed_fragments(args.seed)
    if not fragments:
        logger.error("No fragments found in the seed file")
        sys.exit(1)

    by_category: dict[str, int] = {}
    for fragment in fragments:
        by_category[fragment.category.value] = by_category.get(fragment.category.value, 0) + 1
    for category, count in sorted(by_category.items()):
        logger.info("  %s: %d fragments", category, count)

    logger.info("Generating embeddings with %s (%s)...", provider.name, getattr(provider, "model", ""))
    memory_store = InMemoryKnowledgeStore(dimensions=settings.embedding_dimensions)
    indexer = KnowledgeIndexer(memory_store, provider, settings.retry_delays)
    counts = await indexer.index_all(fragments)

    if counts["without_embedding"]:
        logger.warning("%d fragments could not be embedded", counts["without_embedding"])

    embedded = await memory_store.find_active()

    if not args.no_index_dir:
        index_dir = args.index_dir or settings.knowledge_index_dir or DEFAULT_INDEX_DIR
        save_index(embedded, index_dir, settings.embedding_dimensions)
        logger.info("Saved index to: %s", index_dir)

    if args.database:
        engine = create_engine(settings)
        try:
            await init_models(engine)
            sql_store = SqlKnowledgeStore(engine, dimensions=settings.embedding_dimensions)
            for fragment in embedded:
                await sql_store.upsert(fragment)
            logger.info("Upserted %d fragments into the database", len(embedded))
        finally:
            await engine.dispose()

    logger.info(
        "Index built successfully: %d fragments, %d with %d-dim embeddings",
        counts["indexed"],
        counts["embedded"],
        settings.embedding_dimensions,
    )


if __name__ == "__main__":
    asyncio.run(main())
