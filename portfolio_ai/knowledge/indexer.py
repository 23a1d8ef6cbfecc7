"""Write path: embed fragments and persist them in a knowledge store."""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from portfolio_ai.knowledge.embeddings import EmbeddingProvider
from portfolio_ai.knowledge.exceptions import EmbeddingError
from portfolio_ai.knowledge.models import KnowledgeFragment
from portfolio_ai.knowledge.store import KnowledgeStore
from portfolio_ai.services.retry import retry_async

logger = logging.getLogger(__name__)


class KnowledgeIndexer:
    """Keeps fragment embeddings in step with their content.

    An embedding that still fails after retries leaves ``embedding=None``:
    the fragment is saved and stays reachable through the fallback scorer.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_provider: EmbeddingProvider | None,
        retry_delays: Sequence[float] = (1.0, 2.0, 4.0),
    ) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.retry_delays = tuple(retry_delays)

    async def _embed(self, content: str) -> list[float] | None:
        if self.embedding_provider is None:
            return None

        provider = self.embedding_provider
        try:
            return await retry_async(
                lambda: provider.embed(content, for_query=False),
                delays=self.retry_delays,
                retry_on=(EmbeddingError,),
                operation="embed fragment",
            )
        except EmbeddingError as e:
            logger.warning("Saving fragment without embedding: %s", e)
            return None

    async def add(self, data: dict[str, Any] | KnowledgeFragment) -> KnowledgeFragment:
        """Validate, embed and store a new fragment."""
        fragment = data if isinstance(data, KnowledgeFragment) else KnowledgeFragment(**data)
        fragment = fragment.model_copy(update={"embedding": await self._embed(fragment.content)})
        return await self.store.upsert(fragment)

    async def update_content(self, fragment_id: str, content: str) -> KnowledgeFragment:
        """Replace content, bump the version and regenerate the embedding.

        Raises:
            KeyError: If no fragment has this id.
        """
        existing = await self.store.find_by_id(fragment_id, include_inactive=True)
        if existing is None:
            raise KeyError(fragment_id)

        if content == existing.content:
            return existing

        # Re-validate through the model so length limits apply.
        updated = KnowledgeFragment(
            **{
                **existing.model_dump(),
                "content": content,
                "version": existing.version + 1,
                "last_updated": datetime.now(timezone.utc),
                "embedding": None,
            }
        )
        updated.embedding = await self._embed(updated.content)
        logger.info("Updated fragment %s to version %d", fragment_id, updated.version)
        return await self.store.upsert(updated)

    async def deactivate(self, fragment_id: str) -> KnowledgeFragment:
        """Soft-delete a fragment. It stays in storage but is never retrieved."""
        existing = await self.store.find_by_id(fragment_id, include_inactive=True)
        if existing is None:
            raise KeyError(fragment_id)
        if not existing.is_active:
            return existing
        return await self.store.upsert(existing.model_copy(update={"is_active": False}))

    async def index_all(
        self,
        fragments: Iterable[KnowledgeFragment],
        skip_embedded: bool = True,
    ) -> dict[str, int]:
        """Embed and store many fragments.

        Returns:
            Counts of ``indexed``, ``embedded`` and ``without_embedding``.
        """
        dimensions = self.store.dimensions
        counts = {"indexed": 0, "embedded": 0, "without_embedding": 0}

        for fragment in fragments:
            if not (skip_embedded and fragment.has_valid_embedding(dimensions)):
                fragment = fragment.model_copy(
                    update={"embedding": await self._embed(fragment.content)}
                )
            await self.store.upsert(fragment)

            counts["indexed"] += 1
            if fragment.has_valid_embedding(dimensions):
                counts["embedded"] += 1
            else:
                counts["without_embedding"] += 1

        logger.info(
            "Indexed %d fragments (%d embedded, %d without embedding)",
            counts["indexed"],
            counts["embedded"],
            counts["without_embedding"],
        )
        return counts
