"""Async database handle with explicit lifecycle.

One Database per service object: the engine is created lazily on first
use and disposed by aclose(). The pgvector store and the verification
store share it, so lookups go through the same connection pool.
"""

import logging
import ssl

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bylawqa.core.errors import EmbeddingDimensionError
from bylawqa.storage.models import Base

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, url: str, embedding_dim: int = 1024, require_ssl: bool = False, echo: bool = False):
        self.url = url
        self.embedding_dim = embedding_dim
        self.require_ssl = require_ssl
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            connect_args: dict = {"timeout": 10}  # 10s connection timeout for asyncpg
            if self.require_ssl:
                connect_args["ssl"] = ssl.create_default_context()
            self._engine = create_async_engine(
                self.url,
                echo=self.echo,
                pool_pre_ping=True,
                pool_recycle=300,
                connect_args=connect_args,
            )
        return self._engine

    def session(self) -> AsyncSession:
        """Get a new async session; use as ``async with db.session() as s``."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        return self._session_factory()

    async def init(self) -> None:
        """Create the pgvector extension, all tables, and the vector index.

        A fresh chunk table gets its embedding column sized to embedding_dim;
        an existing one must already match it.

        Raises:
            EmbeddingDimensionError: the stored index was built for another size.
        """
        async with self.engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector;"))
            await conn.run_sync(Base.metadata.create_all)

            # pgvector keeps the dimension in atttypmod; -1 means unsized
            result = await conn.execute(text("""
                SELECT atttypmod FROM pg_attribute
                WHERE attrelid = 'bylaw_chunks'::regclass AND attname = 'embedding';
            """))
            stored_dim = result.scalar()
            if stored_dim is None or stored_dim < 0:
                await conn.execute(text(
                    f"ALTER TABLE bylaw_chunks ALTER COLUMN embedding TYPE vector({int(self.embedding_dim)});"
                ))
                logger.info("Sized bylaw_chunks.embedding to %d dimensions", self.embedding_dim)
            elif stored_dim != self.embedding_dim:
                raise EmbeddingDimensionError(
                    f"bylaw_chunks.embedding holds {stored_dim}-dim vectors but the embedder "
                    f"produces {self.embedding_dim}; re-index or change EMBEDDING_DIM",
                    details={"stored": stored_dim, "configured": self.embedding_dim},
                )

            await conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_bylaw_chunks_embedding
                ON bylaw_chunks USING hnsw (embedding vector_cosine_ops);
            """))
        logger.info("Database initialized")

    async def ping(self) -> None:
        async with self.session() as session:
            await session.execute(text("SELECT 1"))

    async def aclose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
