"""Cross-check search hits against the verification store.

Hits whose bylaw is on record are marked verified and, when the stored
record has the cited section, get the authoritative section text. Bylaws
named explicitly in the query ("Bylaw No. 4742") become anchors: every
known section is returned with score 1.0 ahead of the normal results.

Verification never fails a search; a store error leaves the hit unverified.
"""

import logging
from pathlib import Path

import mlflow
from mlflow.entities import SpanType

from bylawqa.core.types import (
    ChunkMetadata,
    Filters,
    SearchOptions,
    SearchResult,
    VerifiedBylawData,
    VerifiedSearchResult,
)
from bylawqa.ingestion.pdf import find_pdf, guess_category
from bylawqa.retrieval.filters import matches_filters
from bylawqa.retrieval.keywords import extract_bylaw_references
from bylawqa.storage.verification import VerificationBackend

logger = logging.getLogger(__name__)

UNAVAILABLE_CONTENT = "Full bylaw content unavailable. Please refer to the PDF."

Memo = dict[str, VerifiedBylawData | None]


def _number_allowed(number: str, filters: Filters | None) -> bool:
    wanted = (filters or {}).get("bylaw_number")
    if not wanted:
        return True
    if isinstance(wanted, (list, tuple)):
        return number in wanted
    return number == wanted


def _anchor_metadata(anchor: VerifiedSearchResult) -> ChunkMetadata:
    return ChunkMetadata(
        bylaw_number=anchor.bylaw_number,
        title=anchor.title,
        section=anchor.section,
        category=anchor.category,
        date_enacted=anchor.enactment_date or "",
        section_title=anchor.section_title,
        is_consolidated=anchor.is_consolidated,
        consolidated_date=anchor.consolidated_date,
    )


def order_results(results: list[VerifiedSearchResult]) -> list[VerifiedSearchResult]:
    """Verified first, then by descending score. Stable for equal keys."""
    return sorted(results, key=lambda r: (not r.is_verified, -r.score))


class VerificationLayer:
    def __init__(
        self,
        store: VerificationBackend,
        official_url_template: str = "https://oakbay.civicweb.net/document/bylaw/{bylaw_number}",
        similar_limit: int = 3,
        pdf_dir: Path | None = None,
    ):
        self.store = store
        self.official_url_template = official_url_template
        self.similar_limit = similar_limit
        self.pdf_dir = pdf_dir

    async def _lookup(self, bylaw_number: str, memo: Memo) -> VerifiedBylawData | None:
        if bylaw_number in memo:
            return memo[bylaw_number]
        try:
            data = await self.store.get_bylaw(bylaw_number)
        except Exception as e:
            logger.warning(
                "Verification lookup failed for bylaw %s: %s", bylaw_number, e,
                extra={"bylaw_number": bylaw_number},
            )
            data = None
        memo[bylaw_number] = data
        return data

    async def _log_similar(self, bylaw_number: str) -> None:
        try:
            similar = await self.store.find_similar(bylaw_number, limit=self.similar_limit)
        except Exception as e:
            logger.debug("Similar-bylaw lookup failed for %s: %s", bylaw_number, e)
            return
        if similar:
            logger.info(
                "Bylaw %s not verified; similar on record: %s",
                bylaw_number,
                ", ".join(f"{s.bylaw_number} ({s.title})" for s in similar),
                extra={"bylaw_number": bylaw_number},
            )

    def _verified(self, result: SearchResult, data: VerifiedBylawData) -> VerifiedSearchResult:
        meta = result.metadata
        content = result.text
        section_title = meta.section_title
        section = data.find_section(meta.section) if meta.section else None
        if section is not None:
            content = section.content
            section_title = section.title or section_title

        return VerifiedSearchResult(
            id=result.id,
            bylaw_number=data.bylaw_number,
            title=data.title,
            section=meta.section,
            section_title=section_title,
            content=content,
            score=result.score,
            is_verified=True,
            pdf_path=data.pdf_path,
            official_url=data.official_url,
            category=meta.category,
            is_consolidated=data.is_consolidated,
            consolidated_date=data.consolidated_date,
            enactment_date=data.enactment_date,
            amended_bylaw=list(data.amendments),
        )

    def _pdf_path(self, bylaw_number: str) -> str:
        """Public path of the bylaw's PDF, or "" when no file on disk matches."""
        if not bylaw_number or self.pdf_dir is None:
            return ""
        try:
            found = find_pdf(self.pdf_dir, bylaw_number)
        except FileNotFoundError as e:
            logger.warning("PDF lookup for bylaw %s failed: %s", bylaw_number, e)
            return ""
        return f"/pdfs/{found.filename}" if found else ""

    def _unverified(self, result: SearchResult) -> VerifiedSearchResult:
        meta = result.metadata
        number = meta.bylaw_number
        return VerifiedSearchResult(
            id=result.id,
            bylaw_number=number,
            title=meta.title,
            section=meta.section,
            section_title=meta.section_title,
            content=result.text,
            score=result.score,
            is_verified=False,
            pdf_path=self._pdf_path(number),
            official_url=self.official_url_template.format(bylaw_number=number) if number else "",
            category=meta.category,
            is_consolidated=bool(meta.is_consolidated),
            consolidated_date=meta.consolidated_date,
        )

    def _anchors_for(self, data: VerifiedBylawData) -> list[VerifiedSearchResult]:
        common = dict(
            bylaw_number=data.bylaw_number,
            title=data.title,
            score=1.0,
            is_verified=True,
            pdf_path=data.pdf_path,
            official_url=data.official_url,
            category=guess_category(data.title),
            is_consolidated=data.is_consolidated,
            consolidated_date=data.consolidated_date,
            enactment_date=data.enactment_date,
            amended_bylaw=list(data.amendments),
        )
        if not data.sections:
            return [VerifiedSearchResult(
                id=f"{data.bylaw_number}-all", section="all", content=UNAVAILABLE_CONTENT, **common,
            )]
        return [
            VerifiedSearchResult(
                id=f"{data.bylaw_number}-{s.section_number}",
                section=s.section_number,
                section_title=s.title,
                content=s.content,
                **common,
            )
            for s in data.sections
        ]

    async def anchor_results(
        self,
        query: str,
        memo: Memo | None = None,
        options: SearchOptions | None = None,
    ) -> list[VerifiedSearchResult]:
        """Every known section of each bylaw the query names, score 1.0.

        Named bylaws that aren't on record produce no anchors. Anchors obey
        the same filters and exclusions as the search they lead.
        """
        memo = {} if memo is None else memo
        filters = options.filters if options else None
        excluded = set(options.exclude_bylaws) if options else set()

        anchors: list[VerifiedSearchResult] = []
        for number in extract_bylaw_references(query):
            if number in excluded or not _number_allowed(number, filters):
                continue
            data = await self._lookup(number, memo)
            if data is None:
                logger.info("Query names bylaw %s but it is not on record", number, extra={"bylaw_number": number})
                continue
            anchors.extend(a for a in self._anchors_for(data) if matches_filters(_anchor_metadata(a), filters))
        return anchors

    @mlflow.trace(name="verify_and_annotate", span_type=SpanType.CHAIN)
    async def verify_and_annotate(
        self,
        results: list[SearchResult],
        query: str | None = None,
        anchors: list[VerifiedSearchResult] | None = None,
        memo: Memo | None = None,
    ) -> list[VerifiedSearchResult]:
        """Annotate hits, merge in anchors for bylaws the query names, and order the lot.

        Pass precomputed anchors to skip the query lookup; hits for anchored
        bylaws are dropped since the anchors already cover them.
        """
        memo = {} if memo is None else memo
        if anchors is None:
            anchors = await self.anchor_results(query, memo) if query else []
        anchored = {a.bylaw_number for a in anchors}

        annotated: list[VerifiedSearchResult] = []
        unverified_numbers: set[str] = set()
        for result in results:
            number = result.metadata.bylaw_number
            if number in anchored:
                continue
            data = await self._lookup(number, memo) if number else None
            if data is not None:
                annotated.append(self._verified(result, data))
            else:
                annotated.append(self._unverified(result))
                if number:
                    unverified_numbers.add(number)

        for number in sorted(unverified_numbers):
            await self._log_similar(number)

        verified_count = sum(r.is_verified for r in annotated)
        logger.info(
            "Verified %d/%d results, %d anchors", verified_count, len(annotated), len(anchors),
            extra={"result_count": len(anchors) + len(annotated)},
        )
        return order_results(anchors + annotated)
