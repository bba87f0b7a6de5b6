"""Indexing pipeline: chunks -> embed -> validate -> upsert.

Chunking is done upstream; this module takes its output. Chunk ids are
derived from (bylaw, section, chunk index), so re-indexing a bylaw
overwrites its previous chunks instead of piling up duplicates, and with
replace=True any stale chunks of the bylaw are deleted first.
"""

import hashlib
import logging
from pathlib import Path
from typing import Protocol

from bylawqa.core.retry import retry_with_backoff
from bylawqa.core.types import BylawChunk, ChunkMetadata, VectorRecord
from bylawqa.ingestion.embedder import EmbeddingProvider
from bylawqa.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


class ChunkSource(Protocol):
    """Upstream chunker: a PDF plus bylaw-level metadata in, chunks out."""

    def __call__(self, path: Path, metadata: ChunkMetadata) -> list[BylawChunk]: ...


# ---------------------------------------------------------------------------
# Data quality validation
# ---------------------------------------------------------------------------

MIN_CHUNK_TEXT_LENGTH = 50


def validate_chunks(chunks, embeddings, expected_dim: int):
    """Filter out chunks with quality issues before storage.

    Checks:
    - Embedding dimension matches the index (expected_dim)
    - No zero vectors (embedding API failure)
    - Chunk text meets minimum length

    Returns:
        Tuple of (valid_chunks, valid_embeddings).
    """
    valid_chunks, valid_embeddings = [], []
    issues = []

    for i, (chunk, emb) in enumerate(zip(chunks, embeddings)):
        if len(emb) != expected_dim:
            issues.append(f"Chunk {i}: wrong embedding dim {len(emb)}, expected {expected_dim}")
            continue
        if all(v == 0.0 for v in emb):
            issues.append(f"Chunk {i}: zero vector")
            continue
        if len(chunk.text.strip()) < MIN_CHUNK_TEXT_LENGTH:
            issues.append(f"Chunk {i}: text too short ({len(chunk.text.strip())} chars)")
            continue
        valid_chunks.append(chunk)
        valid_embeddings.append(emb)

    if issues:
        logger.warning("Data quality: filtered %d/%d chunks", len(issues), len(chunks))
        for issue in issues[:10]:
            logger.warning("  %s", issue)

    return valid_chunks, valid_embeddings


def chunk_id(metadata: ChunkMetadata) -> str:
    """Stable id for a chunk: bylaw number plus a short hash of its position."""
    key = f"{metadata.bylaw_number}|{metadata.section}|{metadata.chunk_index}"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
    return f"{metadata.bylaw_number}-{digest}"


async def index_chunks(
    chunks: list[BylawChunk],
    embedder: EmbeddingProvider,
    store: VectorStore,
    replace: bool = True,
) -> int:
    """Embed, validate and store chunks.

    Returns:
        Number of chunks stored.
    """
    if not chunks:
        return 0

    texts = [c.text for c in chunks]
    logger.info("Embedding %d chunks...", len(texts))
    embeddings = await retry_with_backoff(
        lambda: embedder.embed_documents(texts), label="embed documents",
    )

    chunks, embeddings = validate_chunks(chunks, embeddings, embedder.dimension)
    if not chunks:
        logger.warning("No valid chunks after validation — skipping store")
        return 0

    # Last writer wins when two chunks map to the same id
    records: dict[str, VectorRecord] = {}
    for chunk, emb in zip(chunks, embeddings):
        rid = chunk_id(chunk.metadata)
        records[rid] = VectorRecord(id=rid, text=chunk.text, metadata=chunk.metadata, embedding=emb)

    if replace:
        numbers = sorted({c.metadata.bylaw_number for c in chunks})
        stored = await store.replace(numbers, list(records.values()))
    else:
        stored = await store.upsert(list(records.values()))
    logger.info("Stored %d chunks for %d bylaws", stored, len({r.metadata.bylaw_number for r in records.values()}))
    return stored


async def index_pdf(
    path: Path,
    metadata: ChunkMetadata,
    chunker: ChunkSource,
    embedder: EmbeddingProvider,
    store: VectorStore,
) -> int:
    """Chunk one bylaw PDF with the supplied chunker and index the result."""
    chunks = chunker(path, metadata)
    logger.info("Chunked %s into %d chunks", path.name, len(chunks))
    return await index_chunks(chunks, embedder, store)
