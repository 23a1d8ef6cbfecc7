"""Seed corpus loader and on-disk index persistence.

Seed fragments live in ``knowledge/data/*.json``. An index directory holds
``fragments.json`` (fragment metadata) and ``embeddings.npy`` (one row per
fragment, zero rows for fragments without an embedding).
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import numpy as np

from portfolio_ai.knowledge.models import KnowledgeFragment

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
SEED_FILE = DATA_DIR / "knowledge_base.json"
FALLBACK_FILE = DATA_DIR / "fallback_knowledge.json"

FRAGMENTS_FILENAME = "fragments.json"
EMBEDDINGS_FILENAME = "embeddings.npy"

MAX_FRAGMENT_CHARS = 5000


def load_seed_fragments(path: Path | None = None) -> list[KnowledgeFragment]:
    """Load seed fragments from a JSON list.

    Entries without an ``id`` get a stable one derived from their source and
    position (``<source>_<nn>``), so re-running the indexer updates rows in
    place. Content longer than 5000 characters is split into several
    fragments (``<id>_c<nn>``).

    Args:
        path: JSON file to read. Defaults to the bundled knowledge base.

    Returns:
        Fragments in file order.
    """
    path = path or SEED_FILE
    with open(path, encoding="utf-8") as f:
        entries: list[dict[str, Any]] = json.load(f)

    fragments: list[KnowledgeFragment] = []
    per_source: dict[str, int] = {}

    for entry in entries:
        source = entry.get("source", "manual")
        index = per_source.get(source, 0)
        per_source[source] = index + 1
        base_id = entry.get("id") or f"{source}_{index:02d}"

        parts = _split_text(entry["content"].strip(), MAX_FRAGMENT_CHARS)
        for part_idx, part in enumerate(parts):
            fragment_id = base_id if len(parts) == 1 else f"{base_id}_c{part_idx:02d}"
            fragments.append(
                KnowledgeFragment(
                    **{**entry, "id": fragment_id, "content": part, "source": source}
                )
            )

    logger.info("Loaded %d seed fragments from %s", len(fragments), path.name)
    return fragments


def load_fallback_fragments() -> list[KnowledgeFragment]:
    """Static corpus used when the knowledge store is unreachable."""
    return load_seed_fragments(FALLBACK_FILE)


def save_index(fragments: list[KnowledgeFragment], index_dir: Path, dimensions: int) -> None:
    """Write fragments and their embeddings to ``index_dir``."""
    index_dir.mkdir(parents=True, exist_ok=True)

    matrix = np.zeros((len(fragments), dimensions), dtype=np.float32)
    for row, fragment in enumerate(fragments):
        if fragment.has_valid_embedding(dimensions):
            matrix[row] = fragment.embedding

    metadata = [fragment.model_dump(mode="json", exclude={"embedding"}) for fragment in fragments]
    with open(index_dir / FRAGMENTS_FILENAME, "w", encoding="utf-8") as f:
        json.dump(metadata, f, ensure_ascii=False, indent=2)
    np.save(index_dir / EMBEDDINGS_FILENAME, matrix)


def load_index(index_dir: Path) -> tuple[list[KnowledgeFragment], bool]:
    """Read an index directory.

    Returns:
        ``(fragments, has_embeddings)``. ``has_embeddings`` is False when
        ``embeddings.npy`` is missing, in which case every fragment is
        returned without an embedding.

    Raises:
        FileNotFoundError: If ``fragments.json`` is missing.
        ValueError: If the embedding matrix does not match the fragment count.
    """
    with open(index_dir / FRAGMENTS_FILENAME, encoding="utf-8") as f:
        fragments = [KnowledgeFragment(**item) for item in json.load(f)]

    embeddings_path = index_dir / EMBEDDINGS_FILENAME
    if not embeddings_path.exists():
        logger.warning("No embeddings found in %s; vector search disabled", index_dir)
        return fragments, False

    matrix = np.load(embeddings_path)
    if matrix.shape[0] != len(fragments):
        raise ValueError(
            f"Fragment count ({len(fragments)}) does not match "
            f"embedding count ({matrix.shape[0]})"
        )

    for fragment, row in zip(fragments, matrix):
        # All-zero rows mark fragments that were never embedded.
        if np.any(row):
            fragment.embedding = [float(v) for v in row]

    return fragments, True


def _split_text(text: str, max_chars: int) -> list[str]:
    """Split text at paragraph, then sentence boundaries.

    Pieces never exceed ``max_chars``; a single sentence longer than that is
    cut hard.
    """
    if len(text) <= max_chars:
        return [text]

    pieces: list[str] = []
    for para in re.split(r"\n\n+", text):
        para = para.strip()
        if not para:
            continue
        if len(para) <= max_chars:
            pieces.append(para)
            continue
        for sentence in re.split(r"(?<=[.!?])\s+", para):
            while len(sentence) > max_chars:
                pieces.append(sentence[:max_chars])
                sentence = sentence[max_chars:]
            if sentence:
                pieces.append(sentence)

    chunks: list[str] = []
    current = ""
    for piece in pieces:
        candidate = f"{current}\n\n{piece}" if current else piece
        if len(candidate) > max_chars:
            chunks.append(current)
            current = piece
        else:
            current = candidate
    if current:
        chunks.append(current)

    return chunks
