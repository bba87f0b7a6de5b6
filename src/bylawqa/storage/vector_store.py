"""pgvector-backed vector store for bylaw chunks.

Similarity is cosine: score = 1 - cosine_distance, clamped to [0, 1].
Filters are translated to SQL WHERE clauses by build_filter_clauses(); the
same semantics are mirrored in Python by retrieval.filters.matches_filters()
for the file-based fallback tiers.
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from bylawqa.core.errors import VectorStoreError
from bylawqa.core.types import CATEGORIES, DEFAULT_CATEGORY, ChunkMetadata, Filters, VectorMatch, VectorRecord
from bylawqa.storage.db import Database
from bylawqa.storage.models import BylawChunkRecord

logger = logging.getLogger(__name__)

# Filter key -> column for equality / IN matching
_FILTER_COLUMNS = {
    "bylaw_number": BylawChunkRecord.bylaw_number,
    "category": BylawChunkRecord.category,
    "section": BylawChunkRecord.section,
    "title": BylawChunkRecord.title,
    "is_consolidated": BylawChunkRecord.is_consolidated,
}


class VectorStore(Protocol):
    async def query(
        self,
        vector: list[float] | None,
        top_k: int,
        filters: Filters | None = None,
        exclude_bylaws: Sequence[str] = (),
    ) -> list[VectorMatch]: ...

    async def upsert(self, records: list[VectorRecord]) -> int: ...

    async def replace(self, bylaw_numbers: Sequence[str], records: list[VectorRecord]) -> int: ...

    async def fetch(self, ids: list[str]) -> dict[str, VectorMatch]: ...

    async def delete_many(self, filters: Filters) -> int: ...


def build_filter_clauses(filters: Filters | None, exclude_bylaws: Sequence[str] = ()) -> list[ColumnElement]:
    """Translate a filter mapping into SQLAlchemy WHERE clauses.

    Scalars match exactly, lists/tuples become IN, None and empty values are
    skipped and unknown keys are ignored. date_from/date_to bound date_enacted.
    """
    clauses: list[ColumnElement] = []
    for key, value in (filters or {}).items():
        if value is None or value == "" or (isinstance(value, (list, tuple)) and not value):
            continue
        if key == "date_from":
            clauses.append(BylawChunkRecord.date_enacted >= str(value))
        elif key == "date_to":
            clauses.append(BylawChunkRecord.date_enacted <= str(value))
        elif key in _FILTER_COLUMNS:
            column = _FILTER_COLUMNS[key]
            if isinstance(value, (list, tuple)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        else:
            logger.debug("Ignoring unknown filter key %r", key)
    if exclude_bylaws:
        clauses.append(BylawChunkRecord.bylaw_number.notin_(list(exclude_bylaws)))
    return clauses


def _metadata_from_row(row: BylawChunkRecord) -> ChunkMetadata:
    category = row.category if row.category in CATEGORIES else DEFAULT_CATEGORY
    return ChunkMetadata(
        bylaw_number=row.bylaw_number,
        title=row.title or "",
        section=row.section or "",
        category=category,
        date_enacted=row.date_enacted or "",
        last_updated=row.last_updated or "",
        section_title=row.section_title,
        is_consolidated=row.is_consolidated,
        consolidated_date=row.consolidated_date,
        chunk_index=row.chunk_index or 0,
    )


def _record_values(record: VectorRecord) -> dict:
    meta = record.metadata
    return {
        "id": record.id,
        "bylaw_number": meta.bylaw_number,
        "title": meta.title,
        "section": meta.section,
        "section_title": meta.section_title,
        "category": meta.category if meta.category in CATEGORIES else DEFAULT_CATEGORY,
        "date_enacted": meta.date_enacted,
        "last_updated": meta.last_updated,
        "is_consolidated": meta.is_consolidated,
        "consolidated_date": meta.consolidated_date,
        "chunk_index": meta.chunk_index,
        "chunk_text": record.text,
        "embedding": record.embedding,
    }


class PgVectorStore:
    """Vector store over the ``bylaw_chunks`` table."""

    def __init__(self, db: Database, upsert_batch_size: int = 100):
        self.db = db
        self.upsert_batch_size = upsert_batch_size

    async def query(
        self,
        vector: list[float] | None,
        top_k: int,
        filters: Filters | None = None,
        exclude_bylaws: Sequence[str] = (),
    ) -> list[VectorMatch]:
        """Return up to top_k matches, best first.

        With vector=None this is a filter-only scan (score 0) ordered by bylaw
        number and chunk index, used by the metadata fallback tier.
        """
        if top_k <= 0:
            return []

        clauses = build_filter_clauses(filters, exclude_bylaws)
        if vector is None:
            stmt = (
                select(BylawChunkRecord)
                .where(*clauses)
                .order_by(BylawChunkRecord.bylaw_number, BylawChunkRecord.chunk_index)
                .limit(top_k)
            )
        else:
            distance = BylawChunkRecord.embedding.cosine_distance(vector).label("distance")
            stmt = (
                select(BylawChunkRecord, distance)
                .where(BylawChunkRecord.embedding.is_not(None), *clauses)
                .order_by(distance)
                .limit(top_k)
            )

        try:
            async with self.db.session() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            raise VectorStoreError(f"Vector query failed: {e}") from e

        matches = []
        for row in rows:
            record = row[0]
            if vector is None:
                score = 0.0
            else:
                score = min(1.0, max(0.0, 1.0 - float(row.distance)))
            matches.append(
                VectorMatch(id=record.id, score=score, text=record.chunk_text, metadata=_metadata_from_row(record))
            )
        return matches

    async def _write(self, session: AsyncSession, records: list[VectorRecord]) -> int:
        written = 0
        for i in range(0, len(records), self.upsert_batch_size):
            batch = [_record_values(r) for r in records[i : i + self.upsert_batch_size]]
            stmt = pg_insert(BylawChunkRecord).values(batch)
            stmt = stmt.on_conflict_do_update(
                index_elements=[BylawChunkRecord.id],
                set_={
                    col: stmt.excluded[col]
                    for col in batch[0]
                    if col != "id"
                },
            )
            await session.execute(stmt)
            written += len(batch)
        return written

    async def upsert(self, records: list[VectorRecord]) -> int:
        """Insert or replace records by id. Returns the number written."""
        if not records:
            return 0

        try:
            async with self.db.session() as session:
                written = await self._write(session, records)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise VectorStoreError(f"Upsert of {len(records)} records failed: {e}") from e

        logger.info("Upserted %d chunks", written)
        return written

    async def replace(self, bylaw_numbers: Sequence[str], records: list[VectorRecord]) -> int:
        """Swap every chunk of the given bylaws for records in one transaction.

        Nothing is deleted unless the new records are written too.
        """
        if not bylaw_numbers:
            raise ValueError("replace requires at least one bylaw number")

        try:
            async with self.db.session() as session:
                result = await session.execute(
                    delete(BylawChunkRecord).where(BylawChunkRecord.bylaw_number.in_(list(bylaw_numbers)))
                )
                written = await self._write(session, records)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise VectorStoreError(f"Replace of bylaws {list(bylaw_numbers)} failed: {e}") from e

        logger.info(
            "Replaced %d chunks with %d for bylaws %s", result.rowcount or 0, written, ", ".join(bylaw_numbers),
        )
        return written

    async def fetch(self, ids: list[str]) -> dict[str, VectorMatch]:
        if not ids:
            return {}
        try:
            async with self.db.session() as session:
                result = await session.execute(select(BylawChunkRecord).where(BylawChunkRecord.id.in_(ids)))
                records = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise VectorStoreError(f"Fetch failed: {e}") from e

        return {
            r.id: VectorMatch(id=r.id, score=1.0, text=r.chunk_text, metadata=_metadata_from_row(r))
            for r in records
        }

    async def delete_many(self, filters: Filters) -> int:
        """Delete every chunk matching filters. An empty filter is refused."""
        clauses = build_filter_clauses(filters)
        if not clauses:
            raise ValueError("delete_many requires at least one filter")
        try:
            async with self.db.session() as session:
                result = await session.execute(delete(BylawChunkRecord).where(*clauses))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise VectorStoreError(f"Delete failed: {e}") from e

        deleted = result.rowcount or 0
        logger.info("Deleted %d chunks matching %s", deleted, filters)
        return deleted
