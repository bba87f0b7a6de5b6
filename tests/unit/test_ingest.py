"""Tests for chunk validation, deterministic ids, and indexing."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from bylawqa.core.types import BylawChunk, ChunkMetadata
from bylawqa.pipeline.ingest import chunk_id, index_chunks, index_pdf, validate_chunks

DIM = 4


def _chunk(bylaw="4742", section="3.1", index=0, text="A" * 100):
    return BylawChunk(text=text, metadata=ChunkMetadata(bylaw, "Tree Protection", section, "trees", chunk_index=index))


def _good_embedding():
    return [0.1] * DIM


class TestValidateChunks:
    def test_valid_chunks_pass(self):
        """Good chunks and embeddings pass validation."""
        valid_c, valid_e = validate_chunks([_chunk(), _chunk()], [_good_embedding(), _good_embedding()], DIM)
        assert len(valid_c) == 2
        assert len(valid_e) == 2

    def test_zero_vector_filtered(self):
        """Zero-vector embeddings are filtered out."""
        valid_c, valid_e = validate_chunks([_chunk(), _chunk()], [_good_embedding(), [0.0] * DIM], DIM)
        assert len(valid_c) == 1
        assert len(valid_e) == 1

    def test_wrong_dimension_filtered(self):
        """Embeddings with wrong dimension are filtered out."""
        valid_c, _ = validate_chunks([_chunk(), _chunk()], [_good_embedding(), [0.1] * 512], DIM)
        assert len(valid_c) == 1

    def test_short_text_filtered(self):
        """Chunks with text shorter than threshold are filtered out."""
        valid_c, _ = validate_chunks([_chunk(text="short")], [_good_embedding()], DIM)
        assert valid_c == []


class TestChunkId:
    def test_stable_and_prefixed(self):
        meta = ChunkMetadata("4742", "Tree Protection", "3.1", chunk_index=2)
        assert chunk_id(meta) == chunk_id(ChunkMetadata("4742", "Other title", "3.1", chunk_index=2))
        assert chunk_id(meta).startswith("4742-")
        assert len(chunk_id(meta)) == len("4742-") + 12

    def test_position_changes_id(self):
        a = ChunkMetadata("4742", "t", "3.1", chunk_index=0)
        b = ChunkMetadata("4742", "t", "3.1", chunk_index=1)
        c = ChunkMetadata("4742", "t", "3.2", chunk_index=0)
        assert len({chunk_id(a), chunk_id(b), chunk_id(c)}) == 3


class TestIndexChunks:
    async def test_reindexing_replaces_instead_of_duplicating(self, vector_store, embedder):
        chunks = [_chunk(index=0), _chunk(index=1)]
        await index_chunks(chunks, embedder, vector_store)
        await index_chunks(chunks, embedder, vector_store)
        assert len(vector_store.records) == 2

    async def test_replace_drops_stale_chunks_of_same_bylaw(self, vector_store, embedder):
        await index_chunks([_chunk(index=i) for i in range(3)], embedder, vector_store)
        await index_chunks([_chunk(index=0)], embedder, vector_store)
        assert len(vector_store.records) == 1

    async def test_other_bylaws_untouched(self, vector_store, embedder):
        await index_chunks([_chunk(bylaw="3210")], embedder, vector_store)
        await index_chunks([_chunk(bylaw="4742")], embedder, vector_store)
        assert {r.metadata.bylaw_number for r in vector_store.records.values()} == {"3210", "4742"}

    async def test_invalid_chunks_not_stored(self, vector_store, embedder):
        stored = await index_chunks([_chunk(text="tiny")], embedder, vector_store)
        assert stored == 0
        assert vector_store.records == {}

    async def test_empty_input(self, vector_store, embedder):
        assert await index_chunks([], embedder, vector_store) == 0
        assert embedder.calls == []

    async def test_index_pdf_uses_chunker(self, vector_store, embedder):
        seen = []

        def chunker(path, metadata):
            seen.append(path)
            return [BylawChunk(text="B" * 80, metadata=metadata)]

        meta = ChunkMetadata("4013", "Animal Control", "1", "animals")
        stored = await index_pdf(Path("4013-Animal-Control.pdf"), meta, chunker, embedder, vector_store)

        assert stored == 1
        assert seen == [Path("4013-Animal-Control.pdf")]

    async def test_failed_write_keeps_existing_chunks(self, vector_store, embedder, monkeypatch):
        await index_chunks([_chunk(index=0)], embedder, vector_store)
        before = dict(vector_store.records)

        monkeypatch.setattr(vector_store, "upsert", AsyncMock(side_effect=RuntimeError("connection reset")))
        with pytest.raises(RuntimeError):
            await index_chunks([_chunk(index=0), _chunk(index=1)], embedder, vector_store)

        assert vector_store.records == before

    async def test_append_mode_skips_delete(self, vector_store, embedder):
        await index_chunks([_chunk(index=0), _chunk(index=1)], embedder, vector_store)
        await index_chunks([_chunk(index=2)], embedder, vector_store, replace=False)
        assert len(vector_store.records) == 3
