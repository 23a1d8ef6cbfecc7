"""Tests for the seed loader and index persistence."""

import json

import numpy as np
import pytest

from portfolio_ai.knowledge.loader import (
    EMBEDDINGS_FILENAME,
    FRAGMENTS_FILENAME,
    MAX_FRAGMENT_CHARS,
    load_fallback_fragments,
    load_index,
    load_seed_fragments,
    save_index,
)
from portfolio_ai.knowledge.models import Category

from conftest import DIMS


def _write_seed(tmp_path, entries):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


class TestLoadSeedFragments:
    """Tests for load_seed_fragments()."""

    def test_bundled_corpus(self):
        """Test the bundled knowledge base loads with unique stable ids."""
        fragments = load_seed_fragments()

        assert len(fragments) == 27
        assert len({f.id for f in fragments}) == len(fragments)
        assert fragments[0].id == "personal_profile_00"
        assert {f.category for f in fragments} >= {Category.PERSONAL, Category.SKILLS}
        assert all(f.embedding is None for f in fragments)

    def test_ids_numbered_per_source(self, tmp_path):
        """Test ids count up within each source."""
        path = _write_seed(
            tmp_path,
            [
                {"content": "Mai knows React well.", "category": "skills", "source": "skills"},
                {"content": "Mai lives in Vietnam.", "category": "personal", "source": "profile"},
                {"content": "Mai knows NestJS well.", "category": "skills", "source": "skills"},
            ],
        )

        fragments = load_seed_fragments(path)

        assert [f.id for f in fragments] == ["skills_00", "profile_00", "skills_01"]

    def test_explicit_id_kept(self, tmp_path):
        """Test entries with an id keep it."""
        path = _write_seed(
            tmp_path,
            [{"id": "custom-1", "content": "Mai knows React well.", "category": "skills"}],
        )

        fragments = load_seed_fragments(path)

        assert fragments[0].id == "custom-1"
        assert fragments[0].source == "manual"

    def test_long_content_split(self, tmp_path):
        """Test oversized content becomes several valid fragments."""
        paragraph = "Mai built many things. " * 150
        content = "\n\n".join([paragraph.strip()] * 4)
        path = _write_seed(
            tmp_path,
            [{"content": content, "category": "projects", "source": "projects"}],
        )

        fragments = load_seed_fragments(path)

        assert len(fragments) > 1
        assert [f.id for f in fragments][:2] == ["projects_00_c00", "projects_00_c01"]
        assert all(len(f.content) <= MAX_FRAGMENT_CHARS for f in fragments)
        assert all(f.category == Category.PROJECTS for f in fragments)

    def test_single_huge_sentence_cut_hard(self, tmp_path):
        """Test a sentence longer than the limit is cut."""
        path = _write_seed(
            tmp_path,
            [{"content": "x" * (MAX_FRAGMENT_CHARS * 2 + 10), "category": "other", "source": "blob"}],
        )

        fragments = load_seed_fragments(path)

        assert [len(f.content) for f in fragments] == [MAX_FRAGMENT_CHARS, MAX_FRAGMENT_CHARS, 10]

    def test_fallback_corpus(self):
        """Test the static fallback corpus loads."""
        fragments = load_fallback_fragments()

        assert len(fragments) == 9
        assert all(f.id.startswith("fallback-") for f in fragments)
        assert any(f.category == Category.CONTACT for f in fragments)


class TestIndexPersistence:
    """Tests for save_index() and load_index()."""

    def test_round_trip(self, tmp_path, make_fragment):
        """Test fragments and embeddings survive a save and load."""
        embedded = make_fragment("Mai knows React and Next.js.")
        unembedded = make_fragment("Mai has no vector yet.", embed=False)

        save_index([embedded, unembedded], tmp_path, DIMS)
        fragments, has_embeddings = load_index(tmp_path)

        assert has_embeddings is True
        assert [f.id for f in fragments] == [embedded.id, unembedded.id]
        assert fragments[0].embedding == pytest.approx(embedded.embedding)
        assert fragments[1].embedding is None

    def test_metadata_excludes_embeddings(self, tmp_path, make_fragment):
        """Test fragments.json carries no vectors."""
        save_index([make_fragment("Mai knows React and Next.js.")], tmp_path, DIMS)

        metadata = json.loads((tmp_path / FRAGMENTS_FILENAME).read_text(encoding="utf-8"))

        assert "embedding" not in metadata[0]
        assert np.load(tmp_path / EMBEDDINGS_FILENAME).shape == (1, DIMS)

    def test_missing_embeddings_file(self, tmp_path, make_fragment):
        """Test an index without embeddings.npy disables vector search."""
        save_index([make_fragment("Mai knows React and Next.js.")], tmp_path, DIMS)
        (tmp_path / EMBEDDINGS_FILENAME).unlink()

        fragments, has_embeddings = load_index(tmp_path)

        assert has_embeddings is False
        assert fragments[0].embedding is None

    def test_count_mismatch(self, tmp_path, make_fragment):
        """Test a matrix with the wrong row count is rejected."""
        save_index([make_fragment("Mai knows React and Next.js.")], tmp_path, DIMS)
        np.save(tmp_path / EMBEDDINGS_FILENAME, np.zeros((2, DIMS), dtype=np.float32))

        with pytest.raises(ValueError):
            load_index(tmp_path)

    def test_missing_index(self, tmp_path):
        """Test a missing directory raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_index(tmp_path / "nowhere")
