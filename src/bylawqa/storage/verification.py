"""Verification store: authoritative bylaw records, their sections, and citation feedback."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from sqlalchemy import delete, func, or_, select

from bylawqa.core.types import (
    BylawSectionData,
    CitationFeedbackEntry,
    FeedbackType,
    VerifiedBylawData,
)
from bylawqa.ingestion.pdf import list_bylaw_pdfs
from bylawqa.storage.db import Database
from bylawqa.storage.models import Bylaw, BylawSection, CitationFeedback

logger = logging.getLogger(__name__)


class VerificationBackend(Protocol):
    async def get_bylaw(self, bylaw_number: str) -> VerifiedBylawData | None: ...

    async def find_similar(self, term: str, limit: int = 5) -> list[VerifiedBylawData]: ...


def _split_amendments(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [a.strip() for a in raw.split(",") if a.strip()]


def _to_data(row: Bylaw) -> VerifiedBylawData:
    return VerifiedBylawData(
        bylaw_number=row.bylaw_number,
        title=row.title,
        pdf_path=row.pdf_path,
        official_url=row.official_url,
        is_consolidated=bool(row.is_consolidated),
        last_verified=row.last_verified,
        consolidated_date=row.consolidated_date,
        enactment_date=row.enactment_date,
        amendments=_split_amendments(row.amendments),
        sections=[
            BylawSectionData(section_number=s.section_number, content=s.content, title=s.title)
            for s in row.sections
        ],
    )


def _section_rows(data: VerifiedBylawData) -> list[BylawSection]:
    return [
        BylawSection(section_number=s.section_number, title=s.title, content=s.content)
        for s in data.sections
    ]


class VerificationStore:
    """Async access to the ``bylaws``, ``bylaw_sections`` and ``citation_feedback`` tables."""

    def __init__(self, db: Database):
        self.db = db

    async def get_bylaw(self, bylaw_number: str) -> VerifiedBylawData | None:
        async with self.db.session() as session:
            row = await session.get(Bylaw, bylaw_number)
            return _to_data(row) if row else None

    async def find_similar(self, term: str, limit: int = 5) -> list[VerifiedBylawData]:
        """Bylaws whose title or number contains ``term`` (case-insensitive)."""
        pattern = f"%{term.strip()}%"
        stmt = (
            select(Bylaw)
            .where(or_(Bylaw.title.ilike(pattern), Bylaw.bylaw_number.ilike(pattern)))
            .order_by(Bylaw.bylaw_number)
            .limit(limit)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [_to_data(r) for r in result.scalars().all()]

    async def add_bylaw(self, data: VerifiedBylawData) -> None:
        async with self.db.session() as session:
            session.add(Bylaw(
                bylaw_number=data.bylaw_number,
                title=data.title,
                is_consolidated=data.is_consolidated,
                pdf_path=data.pdf_path,
                official_url=data.official_url,
                last_verified=data.last_verified or datetime.now(timezone.utc),
                consolidated_date=data.consolidated_date,
                enactment_date=data.enactment_date,
                amendments=",".join(data.amendments) or None,
                sections=_section_rows(data),
            ))
            await session.commit()
        logger.info("Added verified bylaw %s", data.bylaw_number, extra={"bylaw_number": data.bylaw_number})

    async def update_bylaw(self, data: VerifiedBylawData) -> bool:
        """Replace a bylaw record and its sections wholesale. False if it doesn't exist."""
        async with self.db.session() as session:
            row = await session.get(Bylaw, data.bylaw_number)
            if row is None:
                return False
            row.title = data.title
            row.is_consolidated = data.is_consolidated
            row.pdf_path = data.pdf_path
            row.official_url = data.official_url
            row.last_verified = datetime.now(timezone.utc)
            row.consolidated_date = data.consolidated_date
            row.enactment_date = data.enactment_date
            row.amendments = ",".join(data.amendments) or None
            # Flush the orphan deletes before inserting, or the unique constraint trips
            row.sections.clear()
            await session.flush()
            row.sections.extend(_section_rows(data))
            await session.commit()
        return True

    async def delete_bylaw(self, bylaw_number: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(delete(Bylaw).where(Bylaw.bylaw_number == bylaw_number))
            await session.commit()
        return bool(result.rowcount)

    async def record_feedback(
        self,
        bylaw_number: str,
        section: str,
        feedback: FeedbackType,
        comment: str | None = None,
    ) -> CitationFeedbackEntry:
        feedback = FeedbackType(feedback)
        timestamp = datetime.now(timezone.utc)
        async with self.db.session() as session:
            session.add(CitationFeedback(
                bylaw_number=bylaw_number,
                section=section,
                feedback=feedback.value,
                user_comment=comment,
                timestamp=timestamp,
            ))
            await session.commit()
        logger.info("Recorded %s feedback for bylaw %s section %s", feedback.value, bylaw_number, section)
        return CitationFeedbackEntry(
            bylaw_number=bylaw_number,
            section=section,
            feedback=feedback,
            user_comment=comment,
            timestamp=timestamp,
        )

    async def list_feedback(self, bylaw_number: str) -> list[CitationFeedbackEntry]:
        stmt = (
            select(CitationFeedback)
            .where(CitationFeedback.bylaw_number == bylaw_number)
            .order_by(CitationFeedback.timestamp)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [
                CitationFeedbackEntry(
                    bylaw_number=r.bylaw_number,
                    section=r.section,
                    feedback=FeedbackType(r.feedback),
                    user_comment=r.user_comment,
                    timestamp=r.timestamp,
                )
                for r in result.scalars().all()
            ]

    async def count_bylaws(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(Bylaw))
            return int(result.scalar() or 0)

    async def initialize_from_directory(self, pdf_dir: Path, official_url_template: str) -> int:
        """Seed one ``bylaws`` row per numbered PDF in pdf_dir. Existing rows are left alone.

        Returns:
            Number of rows created.
        """
        files = list_bylaw_pdfs(pdf_dir)
        created = 0
        skipped = 0
        async with self.db.session() as session:
            result = await session.execute(select(Bylaw.bylaw_number))
            existing = set(result.scalars().all())
            for f in files:
                if not f.bylaw_number:
                    skipped += 1
                    logger.debug("No bylaw number in %s — skipping", f.filename)
                    continue
                if f.bylaw_number in existing:
                    continue
                session.add(Bylaw(
                    bylaw_number=f.bylaw_number,
                    title=f.title,
                    is_consolidated=f.is_consolidated,
                    pdf_path=f"/pdfs/{f.filename}",
                    official_url=official_url_template.format(bylaw_number=f.bylaw_number),
                    last_verified=datetime.now(timezone.utc),
                ))
                existing.add(f.bylaw_number)
                created += 1
            await session.commit()

        logger.info(
            "Verification store seeded: %d created, %d unnumbered, %d PDFs total",
            created, skipped, len(files),
        )
        return created
