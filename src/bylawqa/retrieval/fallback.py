"""Fallback tiers used when the vector path fails.

Tiers run in order and the first one that returns anything wins:

1. DocumentTitleSearch: match the query against PDF filenames and titles.
2. MetadataVectorSearch: filter-only vector store query, keyword reranked.
3. DirectFileScan: extract text from a bounded number of PDFs and scan it.

A tier that raises is logged and skipped; no tier ever raises to the
caller except for ConfigurationError.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Protocol

import mlflow
from mlflow.entities import SpanType

from bylawqa.core.errors import ConfigurationError
from bylawqa.core.types import ChunkMetadata, SearchOptions, SearchResult
from bylawqa.ingestion.pdf import BylawFile, PdfTextExtractor, extract_pdf_text, guess_category, list_bylaw_pdfs
from bylawqa.retrieval.filters import matches_filters
from bylawqa.retrieval.keywords import extract_keywords, position_weighted_score
from bylawqa.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)

# Text window around the first keyword hit in DirectFileScan
WINDOW_BEFORE = 200
WINDOW_AFTER = 400


class FallbackTier(Protocol):
    name: str

    async def search(self, query: str, options: SearchOptions) -> list[SearchResult]: ...


def _file_metadata(f: BylawFile) -> ChunkMetadata:
    return ChunkMetadata(
        bylaw_number=f.bylaw_number or "",
        title=f.title,
        section="",
        category=guess_category(f.title),
        is_consolidated=f.is_consolidated,
    )


def _candidates(pdf_dir: Path, options: SearchOptions) -> list[tuple[BylawFile, ChunkMetadata]]:
    """PDFs whose filename-derived metadata passes the filters and exclusions."""
    candidates = []
    for f in list_bylaw_pdfs(pdf_dir):
        meta = _file_metadata(f)
        if meta.bylaw_number in options.exclude_bylaws:
            continue
        if matches_filters(meta, options.filters):
            candidates.append((f, meta))
    return candidates


class DocumentTitleSearch:
    """Score PDFs by how well their filename and derived title match the query."""

    name = "title"

    def __init__(self, pdf_dir: Path):
        self.pdf_dir = pdf_dir

    @staticmethod
    def score_file(query: str, f: BylawFile) -> float:
        query_lower = query.strip().lower()
        terms = [t for t in query_lower.split() if len(t) > 2]
        filename = f.filename.lower()
        title = f.title.lower()

        score = 0.0
        if query_lower and (query_lower in filename or query_lower in title):
            score += 0.8
        for term in terms:
            if term in filename:
                score += 0.3
            if term in title:
                score += 0.4
        return min(score, 1.0)

    async def search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        scored = [(self.score_file(query, f), f, meta) for f, meta in _candidates(self.pdf_dir, options)]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            SearchResult(
                id=f"file-{f.bylaw_number or f.filename}",
                text=f"Bylaw {f.bylaw_number or 'Unknown'}: {f.title}",
                metadata=meta,
                score=score,
            )
            for score, f, meta in scored[: options.limit]
        ]


class MetadataVectorSearch:
    """Pull records by metadata alone and rank them by keyword position."""

    name = "metadata"

    def __init__(self, store: VectorStore, pool_size: int = 100):
        self.store = store
        self.pool_size = pool_size

    async def search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        matches = await self.store.query(
            None, self.pool_size, filters=options.filters, exclude_bylaws=options.exclude_bylaws,
        )
        results = []
        for m in matches:
            score = position_weighted_score(query, m.text)
            if score > 0:
                results.append(SearchResult(id=m.id, text=m.text, metadata=m.metadata, score=score))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[: options.limit]


class DirectFileScan:
    """Last resort: read PDFs straight off disk and look for the query keywords."""

    name = "direct"

    def __init__(self, pdf_dir: Path, max_files: int = 10, extractor: PdfTextExtractor = extract_pdf_text):
        self.pdf_dir = pdf_dir
        self.max_files = max_files
        self.extractor = extractor
        self._text_cache: dict[Path, str] = {}

    async def _text(self, path: Path) -> str:
        text = self._text_cache.get(path)
        if text is None:
            logger.info("Extracting text from %s", path.name)
            text = await asyncio.to_thread(self.extractor, path)
            self._text_cache[path] = text
        return text

    async def search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        keywords = extract_keywords(query)
        if not keywords:
            return []

        candidates = _candidates(self.pdf_dir, options)[: self.max_files]
        results: list[SearchResult] = []
        for f, meta in candidates:
            try:
                content = await self._text(f.path)
            except Exception as e:
                logger.warning("Could not read %s: %s", f.filename, e)
                continue

            lower = content.lower()
            hits = [kw for kw in keywords if kw in lower]
            if not hits:
                continue

            pos = lower.find(hits[0])
            window = content[max(0, pos - WINDOW_BEFORE) : pos + WINDOW_AFTER]
            results.append(SearchResult(
                id=f"fallback-{f.filename}-{len(results)}",
                text=window,
                metadata=meta,
                score=len(hits) / len(keywords),
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[: options.limit]


class FallbackChain:
    def __init__(self, tiers: list[FallbackTier]):
        self.tiers = tiers

    async def search(self, query: str, options: SearchOptions) -> tuple[list[SearchResult], str | None]:
        """Run tiers in order. Returns (results, name of the tier that produced them)."""
        if options.limit <= 0:
            return [], None

        for tier in self.tiers:
            start = time.monotonic()
            with mlflow.start_span(name=f"fallback_{tier.name}", span_type=SpanType.RETRIEVER) as span:
                span.set_inputs({"query": query, "limit": options.limit})
                try:
                    results = await tier.search(query, options)
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.warning("Fallback tier %s failed: %s", tier.name, e, extra={"tier": tier.name})
                    span.set_outputs({"error": str(e)})
                    continue
                span.set_outputs({"result_count": len(results)})

            if results:
                logger.info(
                    "Fallback tier %s returned %d results", tier.name, len(results),
                    extra={
                        "tier": tier.name,
                        "result_count": len(results),
                        "duration_ms": round((time.monotonic() - start) * 1000, 1),
                    },
                )
                return results, tier.name
            logger.info("Fallback tier %s found nothing", tier.name, extra={"tier": tier.name})

        return [], None
