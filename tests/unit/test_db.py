"""Tests for Database.init: sizing and checking the embedding column."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from bylawqa.core.errors import ConfigurationError, EmbeddingDimensionError
from bylawqa.storage.db import Database
from bylawqa.storage.models import BylawChunkRecord


def _database(stored_dim, embedding_dim=1024):
    typmod = MagicMock()
    typmod.scalar.return_value = stored_dim
    conn = AsyncMock()
    conn.execute.side_effect = lambda stmt: typmod if "atttypmod" in str(stmt) else MagicMock()

    db = Database("postgresql+asyncpg://u:p@localhost/bylaws", embedding_dim=embedding_dim)
    db._engine = MagicMock()
    db._engine.begin.return_value.__aenter__.return_value = conn
    return db, conn


def _statements(conn):
    return [str(call.args[0]) for call in conn.execute.call_args_list]


class TestDatabaseInit:
    def test_model_column_has_no_fixed_dimension(self):
        assert BylawChunkRecord.__table__.c.embedding.type.dim is None

    async def test_fresh_table_sized_to_configured_dimension(self):
        db, conn = _database(stored_dim=-1, embedding_dim=1536)
        await db.init()

        statements = _statements(conn)
        assert any("ALTER COLUMN embedding TYPE vector(1536)" in s for s in statements)
        assert "hnsw" in statements[-1]

    async def test_matching_dimension_left_alone(self):
        db, conn = _database(stored_dim=1024)
        await db.init()
        assert not any("ALTER TABLE" in s for s in _statements(conn))

    async def test_mismatched_index_is_configuration_error(self):
        db, conn = _database(stored_dim=1024, embedding_dim=1536)
        with pytest.raises(EmbeddingDimensionError) as exc:
            await db.init()

        assert isinstance(exc.value, ConfigurationError)
        assert exc.value.details == {"stored": 1024, "configured": 1536}
        assert not any("hnsw" in s for s in _statements(conn))
