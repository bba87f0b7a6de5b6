"""Shared test fixtures and in-memory doubles for the external stores."""

from datetime import datetime, timezone

import mlflow
import pytest

from bylawqa.core.types import (
    ChunkMetadata,
    CitationFeedbackEntry,
    FeedbackType,
    VectorMatch,
    VectorRecord,
    VerifiedBylawData,
)
from bylawqa.retrieval.batcher import BatcherRegistry
from bylawqa.retrieval.cache import ResultCache
from bylawqa.retrieval.fallback import DirectFileScan, DocumentTitleSearch, FallbackChain, MetadataVectorSearch
from bylawqa.retrieval.filters import matches_filters
from bylawqa.retrieval.search import HybridSearchEngine

DIM = 4


@pytest.fixture(autouse=True)
def _disable_mlflow_tracing():
    """Disable MLflow tracing during tests — no side effects, no mlruns/ writes."""
    mlflow.tracing.disable()
    yield
    mlflow.tracing.enable()


class FakeEmbedder:
    """Returns the same unit vector for every text and counts calls."""

    def __init__(self, dimension: int = DIM, fail: Exception | None = None):
        self.dimension = dimension
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed_query(self, text):
        return (await self.embed_queries([text]))[0]

    async def embed_queries(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise self.fail
        return [[1.0] + [0.0] * (self.dimension - 1) for _ in texts]

    async def embed_documents(self, texts):
        return await self.embed_queries(texts)

    async def aclose(self):
        return None


class InMemoryVectorStore:
    """Vector store double: similarity scores are fixed per record id."""

    def __init__(self, fail: Exception | None = None):
        self.records: dict[str, VectorRecord] = {}
        self.scores: dict[str, float] = {}
        self.fail = fail
        self.query_calls: list[dict] = []

    def add(self, id, text, score, **meta):
        meta.setdefault("title", f"Bylaw {meta.get('bylaw_number', '')}")
        meta.setdefault("section", "1")
        self.records[id] = VectorRecord(id=id, text=text, metadata=ChunkMetadata(**meta), embedding=[1.0] * DIM)
        self.scores[id] = score

    async def query(self, vector, top_k, filters=None, exclude_bylaws=()):
        self.query_calls.append({"vector": vector, "top_k": top_k, "filters": filters, "exclude": exclude_bylaws})
        if self.fail:
            raise self.fail
        rows = [
            r for r in self.records.values()
            if matches_filters(r.metadata, filters) and r.metadata.bylaw_number not in exclude_bylaws
        ]
        if vector is None:
            rows.sort(key=lambda r: (r.metadata.bylaw_number, r.metadata.chunk_index))
            return [VectorMatch(id=r.id, score=0.0, text=r.text, metadata=r.metadata) for r in rows[:top_k]]
        rows.sort(key=lambda r: self.scores[r.id], reverse=True)
        return [VectorMatch(id=r.id, score=self.scores[r.id], text=r.text, metadata=r.metadata) for r in rows[:top_k]]

    async def upsert(self, records):
        for r in records:
            self.records[r.id] = r
            self.scores.setdefault(r.id, 1.0)
        return len(records)

    async def replace(self, bylaw_numbers, records):
        snapshot = dict(self.records)
        try:
            await self.delete_many({"bylaw_number": list(bylaw_numbers)})
            return await self.upsert(records)
        except Exception:
            self.records = snapshot
            raise

    async def fetch(self, ids):
        if self.fail:
            raise self.fail
        return {
            i: VectorMatch(id=i, score=1.0, text=self.records[i].text, metadata=self.records[i].metadata)
            for i in ids if i in self.records
        }

    async def delete_many(self, filters):
        doomed = [i for i, r in self.records.items() if matches_filters(r.metadata, filters)]
        for i in doomed:
            del self.records[i]
        return len(doomed)


class FakeVerificationStore:
    def __init__(self, bylaws: list[VerifiedBylawData] | None = None, fail: Exception | None = None):
        self.bylaws = {b.bylaw_number: b for b in bylaws or []}
        self.fail = fail
        self.lookups: list[str] = []
        self.feedback: list[CitationFeedbackEntry] = []

    async def get_bylaw(self, bylaw_number):
        self.lookups.append(bylaw_number)
        if self.fail:
            raise self.fail
        return self.bylaws.get(bylaw_number)

    async def find_similar(self, term, limit=5):
        if self.fail:
            raise self.fail
        return [b for b in self.bylaws.values() if term in b.bylaw_number or term.lower() in b.title.lower()][:limit]

    async def record_feedback(self, bylaw_number, section, feedback, comment=None):
        entry = CitationFeedbackEntry(
            bylaw_number=bylaw_number,
            section=section,
            feedback=FeedbackType(feedback),
            user_comment=comment,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.feedback.append(entry)
        return entry

    async def count_bylaws(self):
        return len(self.bylaws)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def pdf_dir(tmp_path):
    d = tmp_path / "pdfs"
    d.mkdir()
    return d


@pytest.fixture
def make_engine(pdf_dir):
    """Build a HybridSearchEngine over the given doubles with fast timers."""

    def _make(store, embedder, cache=True, extractor=None):
        tiers = [
            DocumentTitleSearch(pdf_dir),
            MetadataVectorSearch(store, pool_size=100),
        ]
        if extractor is not None:
            tiers.append(DirectFileScan(pdf_dir, max_files=10, extractor=extractor))
        return HybridSearchEngine(
            embedder,
            store,
            FallbackChain(tiers),
            BatcherRegistry(max_wait_ms=1.0),
            cache=ResultCache() if cache else None,
            vector_retry_attempts=2,
            vector_retry_base_delay=0.0,
        )

    return _make


@pytest.fixture
def tree_bylaw():
    return VerifiedBylawData(
        bylaw_number="4742",
        title="Tree Protection Bylaw, 2020",
        pdf_path="/pdfs/4742-Tree-Protection-Bylaw-2020-CONSOLIDATED.pdf",
        official_url="https://oakbay.civicweb.net/document/bylaw/4742",
        is_consolidated=True,
        consolidated_date="September 30, 2021",
        enactment_date="2020-05-11",
        amendments=["4772"],
        sections=[],
    )


@pytest.fixture
def make_verification_store():
    return FakeVerificationStore
