"""Tests for the knowledge indexer (write path)."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from portfolio_ai.knowledge.exceptions import EmbeddingError
from portfolio_ai.knowledge.indexer import KnowledgeIndexer
from portfolio_ai.knowledge.models import Category
from portfolio_ai.knowledge.store import InMemoryKnowledgeStore

from conftest import DIMS, axis_vector, bag_of_words_vector


@pytest.fixture
def empty_store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def indexer(empty_store, fake_embedder) -> KnowledgeIndexer:
    return KnowledgeIndexer(empty_store, fake_embedder, retry_delays=(0, 0))


class TestAdd:
    """Tests for KnowledgeIndexer.add()."""

    async def test_add_embeds_and_stores(self, indexer, empty_store):
        """Test a new fragment is embedded and persisted."""
        fragment = await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        stored = await empty_store.find_by_id("skills-1")
        assert stored.embedding == bag_of_words_vector("Mai knows React and Next.js.")
        assert fragment.has_valid_embedding(DIMS)

    async def test_add_validates_input(self, indexer):
        """Test invalid fragments are rejected before storage."""
        with pytest.raises(ValidationError):
            await indexer.add({"content": "short", "category": "skills"})

    async def test_failed_embedding_stores_without_vector(self, empty_store, failing_embedder):
        """Test a fragment is saved without embedding after retries run out."""
        indexer = KnowledgeIndexer(empty_store, failing_embedder, retry_delays=(0, 0))

        fragment = await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        assert fragment.embedding is None
        assert len(failing_embedder.calls) == 3
        assert (await empty_store.find_by_id("skills-1")) is not None

    async def test_transient_failure_retried(self, empty_store):
        """Test one failure followed by success still embeds."""
        provider = MagicMock()
        provider.embed = AsyncMock(side_effect=[EmbeddingError("rate limited"), axis_vector(3)])
        indexer = KnowledgeIndexer(empty_store, provider, retry_delays=(0,))

        fragment = await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        assert fragment.embedding == axis_vector(3)
        assert provider.embed.await_count == 2

    async def test_without_provider(self, empty_store):
        """Test indexing works lexical-only when no provider is configured."""
        indexer = KnowledgeIndexer(empty_store, None)

        fragment = await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        assert fragment.embedding is None


class TestUpdateContent:
    """Tests for KnowledgeIndexer.update_content()."""

    async def test_bumps_version_and_reembeds(self, indexer, empty_store):
        """Test changed content gets a new version, timestamp and embedding."""
        original = await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        updated = await indexer.update_content("skills-1", "Mai now also writes Rust services.")

        assert updated.version == original.version + 1
        assert updated.last_updated > original.last_updated
        assert updated.embedding == bag_of_words_vector("Mai now also writes Rust services.")
        stored = await empty_store.find_by_id("skills-1")
        assert stored.content == "Mai now also writes Rust services."
        assert stored.version == 2

    async def test_unchanged_content_is_noop(self, indexer, fake_embedder):
        """Test identical content neither bumps the version nor re-embeds."""
        await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )
        calls_before = len(fake_embedder.calls)

        result = await indexer.update_content("skills-1", "Mai knows React and Next.js.")

        assert result.version == 1
        assert len(fake_embedder.calls) == calls_before

    async def test_unknown_id(self, indexer):
        """Test updating a missing fragment raises KeyError."""
        with pytest.raises(KeyError):
            await indexer.update_content("missing", "Mai now also writes Rust services.")

    async def test_invalid_content(self, indexer):
        """Test new content is validated."""
        await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        with pytest.raises(ValidationError):
            await indexer.update_content("skills-1", "tiny")


class TestDeactivate:
    """Tests for KnowledgeIndexer.deactivate()."""

    async def test_soft_delete(self, indexer, empty_store):
        """Test deactivated fragments stay stored but are not active."""
        await indexer.add(
            {"id": "skills-1", "content": "Mai knows React and Next.js.", "category": "skills"}
        )

        await indexer.deactivate("skills-1")

        assert await empty_store.find_active() == []
        stored = await empty_store.find_by_id("skills-1", include_inactive=True)
        assert stored.is_active is False

    async def test_unknown_id(self, indexer):
        """Test deactivating a missing fragment raises KeyError."""
        with pytest.raises(KeyError):
            await indexer.deactivate("missing")


class TestIndexAll:
    """Tests for KnowledgeIndexer.index_all()."""

    async def test_counts(self, indexer, make_fragment, fake_embedder):
        """Test already-embedded fragments are skipped and counted."""
        fragments = [
            make_fragment("Mai knows React and Next.js."),
            make_fragment("Mai studied computer science.", Category.EDUCATION, embed=False),
        ]

        counts = await indexer.index_all(fragments)

        assert counts == {"indexed": 2, "embedded": 2, "without_embedding": 0}
        assert fake_embedder.calls == ["Mai studied computer science."]

    async def test_reembed_everything(self, indexer, make_fragment, fake_embedder):
        """Test skip_embedded=False embeds every fragment."""
        fragments = [make_fragment("Mai knows React and Next.js.")]

        await indexer.index_all(fragments, skip_embedded=False)

        assert fake_embedder.calls == ["Mai knows React and Next.js."]

    async def test_counts_failures(self, empty_store, failing_embedder, make_fragment):
        """Test fragments that could not be embedded are counted."""
        indexer = KnowledgeIndexer(empty_store, failing_embedder, retry_delays=())

        counts = await indexer.index_all([make_fragment("Mai knows React.", embed=False)])

        assert counts == {"indexed": 1, "embedded": 0, "without_embedding": 1}
        assert len(empty_store) == 1

    async def test_one_failure_does_not_block_the_rest(self, empty_store, make_fragment):
        """Test fragments are embedded individually as documents."""
        provider = AsyncMock()
        provider.embed.side_effect = [EmbeddingError("quota"), axis_vector(3)]
        indexer = KnowledgeIndexer(empty_store, provider, retry_delays=())
        fragments = [
            make_fragment("Mai knows React.", embed=False),
            make_fragment("Mai studied computer science.", Category.EDUCATION, embed=False),
        ]

        counts = await indexer.index_all(fragments)

        assert counts == {"indexed": 2, "embedded": 1, "without_embedding": 1}
        assert all(c.kwargs == {"for_query": False} for c in provider.embed.await_args_list)
        stored = await empty_store.find_by_id(fragments[1].id)
        assert stored.embedding == axis_vector(3)
