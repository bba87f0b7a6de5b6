"""Hybrid search: vector similarity blended with keyword overlap, with tiered fallback.

The vector path runs through a request batcher so concurrent searches
share one embedding call:

    query -> cache -> batcher -> embed_queries -> vector store (top_k = 2 * limit)
          -> drop below min_score -> 0.7 * vector + 0.3 * keyword -> sort -> limit

Any failure on that path (embedding error, unreachable store, empty store
response) drops to the fallback chain instead of raising. Fallback output
is not cached, so the next call retries the vector path.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace

import mlflow
from mlflow.entities import SpanType

from bylawqa.core.errors import ConfigurationError, EmptyVectorResponse
from bylawqa.core.retry import retry_with_backoff
from bylawqa.core.types import SearchOptions, SearchResult, VectorMatch
from bylawqa.ingestion.embedder import EmbeddingProvider
from bylawqa.retrieval.batcher import BatcherRegistry
from bylawqa.retrieval.cache import ResultCache, make_key
from bylawqa.retrieval.fallback import FallbackChain
from bylawqa.retrieval.keywords import blend_scores, keyword_score
from bylawqa.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)

# Over-fetch so min_score filtering and reranking don't starve the result count
OVERFETCH_FACTOR = 2
SEARCH_NAMESPACE = "bylaws"


@dataclass
class _SearchRequest:
    query: str
    options: SearchOptions


def rerank(query: str, matches: list[VectorMatch], min_score: float, limit: int) -> list[SearchResult]:
    """Drop weak matches, blend in keyword overlap, sort best first and truncate."""
    results = []
    for m in matches:
        if m.score < min_score:
            continue
        kw = keyword_score(query, m.text)
        results.append(SearchResult(
            id=m.id,
            text=m.text,
            metadata=m.metadata,
            score=blend_scores(m.score, kw),
            keyword_score=kw,
        ))
    results.sort(key=lambda r: r.score, reverse=True)
    return [replace(r, keyword_score=None) for r in results[:limit]]


class HybridSearchEngine:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: VectorStore,
        fallback: FallbackChain,
        batchers: BatcherRegistry,
        cache: ResultCache | None = None,
        vector_retry_attempts: int = 3,
        vector_retry_base_delay: float = 0.5,
    ):
        self.embedder = embedder
        self.store = store
        self.fallback = fallback
        self.cache = cache
        self.vector_retry_attempts = vector_retry_attempts
        self.vector_retry_base_delay = vector_retry_base_delay
        # Embedding failures go straight to fallback, so the batch itself is never retried
        self._batcher = batchers.get(SEARCH_NAMESPACE, self._process_batch, retry_count=0)

    @mlflow.trace(name="hybrid_search", span_type=SpanType.RETRIEVER)
    async def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Ranked passages for query. Never raises except for configuration errors."""
        options = options or SearchOptions()
        if options.limit <= 0:
            return []

        key = None
        if self.cache is not None and options.use_cache:
            key = make_key(query, options)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit", extra={"query": query, "result_count": len(cached)})
                return cached

        start = time.monotonic()
        try:
            results = await self._batcher.add(_SearchRequest(query, options))
            if isinstance(results, BaseException):
                raise results
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning("Vector search failed, using fallback: %s", e, extra={"query": query})
            results, tier = await self.fallback.search(query, options)
            logger.info(
                "Fallback search done",
                extra={
                    "query": query,
                    "tier": tier or "none",
                    "result_count": len(results),
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )
            return results

        if key is not None:
            self.cache.set(key, results)

        logger.info(
            "Hybrid search done",
            extra={
                "query": query,
                "tier": "vector",
                "result_count": len(results),
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
            },
        )
        return results

    async def _process_batch(self, requests: list[_SearchRequest]) -> list[list[SearchResult] | Exception]:
        """Embed every queued query in one call, then run the vector queries concurrently.

        A failing vector query only fails its own request; an embedding failure
        fails the whole batch.
        """
        with mlflow.start_span(name="search_batch", span_type=SpanType.RETRIEVER) as span:
            span.set_inputs({"batch_size": len(requests)})
            vectors = await self.embedder.embed_queries([r.query for r in requests])
            outcomes = await asyncio.gather(
                *(self._vector_search(r, v) for r, v in zip(requests, vectors)),
                return_exceptions=True,
            )
            span.set_outputs({"failed": sum(isinstance(o, BaseException) for o in outcomes)})
        return list(outcomes)

    async def _vector_search(self, request: _SearchRequest, vector: list[float]) -> list[SearchResult]:
        options = request.options
        matches = await retry_with_backoff(
            lambda: self.store.query(
                vector,
                OVERFETCH_FACTOR * options.limit,
                filters=options.filters,
                exclude_bylaws=options.exclude_bylaws,
            ),
            max_attempts=self.vector_retry_attempts,
            base_delay=self.vector_retry_base_delay,
            label="vector query",
        )
        if not matches:
            raise EmptyVectorResponse("Vector store returned no matches")
        return rerank(request.query, matches, options.min_score, options.limit)

    async def get_bylaw_by_id(self, chunk_id: str) -> SearchResult | None:
        try:
            found = await self.store.fetch([chunk_id])
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Fetch of chunk %s failed: %s", chunk_id, e)
            return None
        match = found.get(chunk_id)
        if match is None:
            return None
        return SearchResult(id=match.id, text=match.text, metadata=match.metadata, score=1.0)
