"""BylawSearchService: the one object that owns every client, cache and batcher.

    async with BylawSearchService(settings) as service:
        results = await service.search("dog leash rules")

Backends are picked once from Settings at construction; tests inject
their own store, embedder or extractor instead.
"""

import logging
from dataclasses import replace

from bylawqa.config import Settings
from bylawqa.core.types import (
    BylawToolResult,
    CitationFeedbackEntry,
    FeedbackType,
    SearchOptions,
    SearchResult,
    VerifiedSearchResult,
)
from bylawqa.ingestion.embedder import EmbeddingProvider, build_embedder
from bylawqa.ingestion.pdf import PdfTextExtractor, extract_pdf_text
from bylawqa.pipeline.tool import to_tool_result
from bylawqa.retrieval.batcher import BatcherRegistry
from bylawqa.retrieval.cache import ResultCache
from bylawqa.retrieval.fallback import DirectFileScan, DocumentTitleSearch, FallbackChain, MetadataVectorSearch
from bylawqa.retrieval.search import HybridSearchEngine
from bylawqa.retrieval.verification import VerificationLayer
from bylawqa.storage.db import Database
from bylawqa.storage.vector_store import PgVectorStore, VectorStore
from bylawqa.storage.verification import VerificationStore

logger = logging.getLogger(__name__)


class BylawSearchService:
    def __init__(
        self,
        settings: Settings,
        *,
        database: Database | None = None,
        embedder: EmbeddingProvider | None = None,
        vector_store: VectorStore | None = None,
        verification_store: VerificationStore | None = None,
        pdf_extractor: PdfTextExtractor = extract_pdf_text,
    ):
        self.settings = settings
        self._owns_database = database is None and (vector_store is None or verification_store is None)
        if self._owns_database:
            database = Database(
                settings.database_url,
                embedding_dim=settings.embedding_dim,
                require_ssl=settings.database_require_ssl,
            )
        self.database = database

        self.embedder = embedder or build_embedder(settings)
        self.vector_store = vector_store or PgVectorStore(database)
        self.verification_store = verification_store or VerificationStore(database)

        self.cache = ResultCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            purge_probability=settings.cache_purge_probability,
        )
        self.batchers = BatcherRegistry(
            max_batch_size=settings.batch_max_size,
            max_wait_ms=settings.batch_max_wait_ms,
        )
        self.fallback = FallbackChain([
            DocumentTitleSearch(settings.pdf_dir),
            MetadataVectorSearch(self.vector_store, pool_size=settings.metadata_fallback_pool),
            DirectFileScan(settings.pdf_dir, max_files=settings.max_scan_files, extractor=pdf_extractor),
        ])
        self.engine = HybridSearchEngine(
            self.embedder,
            self.vector_store,
            self.fallback,
            self.batchers,
            cache=self.cache,
            vector_retry_attempts=settings.vector_retry_attempts,
            vector_retry_base_delay=settings.vector_retry_base_delay,
        )
        self.verification = VerificationLayer(
            self.verification_store,
            official_url_template=settings.official_url_template,
            pdf_dir=settings.pdf_dir,
        )
        self._open = False

    async def open(self) -> "BylawSearchService":
        if self._open:
            return self
        if self._owns_database:
            await self.database.init()
        self._open = True
        logger.info("Search service open (embeddings: %s)", self.settings.embedding_provider)
        return self

    async def aclose(self) -> None:
        await self.batchers.aclose()
        await self.embedder.aclose()
        if self._owns_database:
            await self.database.aclose()
        self.cache.clear()
        self._open = False

    async def __aenter__(self) -> "BylawSearchService":
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def retrieve(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Hybrid search results before verification."""
        return await self.engine.search(query, options)

    async def search(self, query: str, options: SearchOptions | None = None) -> list[VerifiedSearchResult]:
        """Verified citations for query, with explicitly named bylaws first."""
        options = options or SearchOptions()
        memo: dict = {}
        anchors = await self.verification.anchor_results(query, memo=memo, options=options)
        anchored = {a.bylaw_number for a in anchors}
        if anchored:
            options = replace(options, exclude_bylaws=tuple(sorted(anchored | set(options.exclude_bylaws))))

        results = await self.engine.search(query, options)
        return await self.verification.verify_and_annotate(results, anchors=anchors, memo=memo)

    async def get_bylaw_by_id(self, chunk_id: str) -> SearchResult | None:
        return await self.engine.get_bylaw_by_id(chunk_id)

    async def record_feedback(
        self,
        bylaw_number: str,
        section: str,
        feedback: FeedbackType,
        comment: str | None = None,
    ) -> CitationFeedbackEntry:
        return await self.verification_store.record_feedback(bylaw_number, section, feedback, comment)

    async def tool_search(
        self,
        query: str,
        category: str | None = None,
        bylaw_number: str | None = None,
    ) -> BylawToolResult:
        """Search entry point for the agent tool: optional category and bylaw filters."""
        filters = {}
        if category:
            filters["category"] = category
        if bylaw_number:
            filters["bylaw_number"] = bylaw_number
        results = await self.search(query, SearchOptions(filters=filters or None))
        return to_tool_result(results)
