"""Tests for the fallback tiers and the chain that runs them."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from bylawqa.core.errors import ConfigurationError, VectorStoreError
from bylawqa.core.types import SearchOptions
from bylawqa.ingestion.pdf import parse_bylaw_file
from bylawqa.retrieval.fallback import (
    DirectFileScan,
    DocumentTitleSearch,
    FallbackChain,
    MetadataVectorSearch,
)


def _touch(pdf_dir, *names):
    for name in names:
        (pdf_dir / name).write_bytes(b"%PDF-1.4")


class TestDocumentTitleSearch:
    def test_score_whole_query_match(self, pdf_dir):
        f = parse_bylaw_file(pdf_dir / "4742-Tree-Protection-Bylaw-2020-CONSOLIDATED.pdf")
        assert DocumentTitleSearch.score_file("tree protection", f) == 1.0

    def test_score_per_term(self, pdf_dir):
        f = parse_bylaw_file(pdf_dir / "3210 - Anti-Noise Bylaw.pdf")
        # "noise" is in both filename (+0.3) and title (+0.4); "hours" is in neither
        assert DocumentTitleSearch.score_file("noise hours", f) == pytest.approx(0.7)

    def test_score_zero(self, pdf_dir):
        f = parse_bylaw_file(pdf_dir / "3210 - Anti-Noise Bylaw.pdf")
        assert DocumentTitleSearch.score_file("parking", f) == 0.0

    async def test_ranked_synthetic_results(self, pdf_dir):
        _touch(pdf_dir, "4742-Tree-Protection-Bylaw-2020-CONSOLIDATED.pdf", "3210 - Anti-Noise Bylaw.pdf", "Tax Rates Bylaw 2024, No. 4861.pdf")
        tier = DocumentTitleSearch(pdf_dir)

        results = await tier.search("tree bylaw", SearchOptions())

        assert results[0].id == "file-4742"
        assert results[0].text == "Bylaw 4742: Tree Protection Bylaw 2020 CONSOLIDATED"
        assert results[0].metadata.is_consolidated is True
        assert all(r.score <= 1.0 for r in results)
        assert {r.metadata.bylaw_number for r in results} == {"4742", "3210", "4861"}

    async def test_honours_bylaw_number_filter_and_limit(self, pdf_dir):
        _touch(pdf_dir, "4742-Tree-Protection-Bylaw.pdf", "3210 - Anti-Noise Bylaw.pdf")
        tier = DocumentTitleSearch(pdf_dir)

        results = await tier.search("bylaw", SearchOptions(filters={"bylaw_number": "3210"}))
        assert [r.metadata.bylaw_number for r in results] == ["3210"]

        results = await tier.search("bylaw", SearchOptions(limit=1))
        assert len(results) == 1

    async def test_applies_every_filter_key(self, pdf_dir):
        _touch(pdf_dir, "4100-Streets-Traffic-Bylaw-2000.pdf", "3540, Parking Facilities BL 1986 (CONSOLIDATED)_1.pdf")
        tier = DocumentTitleSearch(pdf_dir)

        results = await tier.search("traffic parking", SearchOptions(filters={"is_consolidated": True}))
        assert [r.metadata.bylaw_number for r in results] == ["3540"]

        results = await tier.search("traffic", SearchOptions(filters={"category": "noise"}))
        assert results == []

    async def test_exclusions_skip_files(self, pdf_dir):
        _touch(pdf_dir, "4742-Tree-Protection-Bylaw.pdf", "3210 - Anti-Noise Bylaw.pdf")
        results = await DocumentTitleSearch(pdf_dir).search("bylaw", SearchOptions(exclude_bylaws=("4742",)))
        assert [r.metadata.bylaw_number for r in results] == ["3210"]

    async def test_missing_directory_raises(self, tmp_path):
        tier = DocumentTitleSearch(tmp_path / "nope")
        with pytest.raises(FileNotFoundError):
            await tier.search("tree", SearchOptions())


class TestMetadataVectorSearch:
    async def test_filter_only_query_and_position_scoring(self, vector_store):
        vector_store.add("early", "hedge height is limited to 2 metres", 0.0, bylaw_number="3540")
        vector_store.add("late", "in all residential zones any fence or hedge", 0.0, bylaw_number="3540")
        vector_store.add("none", "sign permits", 0.0, bylaw_number="3541")
        tier = MetadataVectorSearch(vector_store, pool_size=50)

        results = await tier.search("hedge", SearchOptions(filters={"category": "general"}))

        assert vector_store.query_calls[0]["vector"] is None
        assert vector_store.query_calls[0]["top_k"] == 50
        assert vector_store.query_calls[0]["filters"] == {"category": "general"}
        assert [r.id for r in results] == ["early", "late"]

    async def test_store_error_propagates_to_chain(self, vector_store):
        vector_store.fail = VectorStoreError("down")
        tier = MetadataVectorSearch(vector_store)
        with pytest.raises(VectorStoreError):
            await tier.search("hedge", SearchOptions())


class TestDirectFileScan:
    async def test_window_around_first_hit(self, pdf_dir):
        _touch(pdf_dir, "4013-Animal-Control.pdf")
        text = "x" * 500 + "Every dog must be leashed." + "y" * 1000
        tier = DirectFileScan(pdf_dir, extractor=lambda path: text)

        results = await tier.search("dog leash", SearchOptions())

        assert len(results) == 1
        r = results[0]
        assert r.metadata.bylaw_number == "4013"
        assert r.score == 1.0
        assert len(r.text) == 600
        assert "Every dog" in r.text
        assert r.id == "fallback-4013-Animal-Control.pdf-0"

    async def test_text_extracted_once_per_file(self, pdf_dir):
        _touch(pdf_dir, "4013-Animal-Control.pdf")
        extractor = MagicMock(return_value="dog rules")
        tier = DirectFileScan(pdf_dir, extractor=extractor)

        await tier.search("dog", SearchOptions())
        await tier.search("dog", SearchOptions())

        assert extractor.call_count == 1

    async def test_bounded_file_count(self, pdf_dir):
        _touch(pdf_dir, *(f"{4000 + i}-Bylaw.pdf" for i in range(15)))
        extractor = MagicMock(return_value="dog")
        tier = DirectFileScan(pdf_dir, max_files=10, extractor=extractor)

        results = await tier.search("dog", SearchOptions(limit=50))

        assert extractor.call_count == 10
        assert len(results) == 10

    async def test_unreadable_file_skipped(self, pdf_dir):
        _touch(pdf_dir, "4013-A.pdf", "4014-B.pdf")

        def extractor(path):
            if path.name.startswith("4013"):
                raise RuntimeError("cannot open broken document")
            return "dog"

        results = await DirectFileScan(pdf_dir, extractor=extractor).search("dog", SearchOptions())
        assert [r.metadata.bylaw_number for r in results] == ["4014"]

    async def test_filters_applied_before_reading(self, pdf_dir):
        _touch(pdf_dir, "4100-Streets-Traffic-Bylaw-2000.pdf", "4013, Animal Control Bylaw, 1999 (CONSOLIDATED)_1.pdf")
        extractor = MagicMock(return_value="no dogs on streets")
        tier = DirectFileScan(pdf_dir, extractor=extractor)

        results = await tier.search("dogs streets", SearchOptions(filters={"is_consolidated": True}))

        assert [r.metadata.bylaw_number for r in results] == ["4013"]
        assert all(r.metadata.is_consolidated for r in results)
        assert extractor.call_count == 1

    async def test_category_filter_uses_title(self, pdf_dir):
        _touch(pdf_dir, "4100-Streets-Traffic-Bylaw-2000.pdf", "4013-Animal-Control.pdf")
        tier = DirectFileScan(pdf_dir, extractor=lambda p: "no dogs on streets")

        results = await tier.search("dogs", SearchOptions(filters={"category": ["traffic"]}))

        assert [r.metadata.category for r in results] == ["traffic"]

    async def test_partial_match_scores_ratio(self, pdf_dir):
        _touch(pdf_dir, "4013-A.pdf")
        results = await DirectFileScan(pdf_dir, extractor=lambda p: "dog park").search("dog leash", SearchOptions())
        assert results[0].score == 0.5


class TestFallbackChain:
    def _tier(self, name, results=None, error=None):
        tier = MagicMock()
        tier.name = name
        tier.search = AsyncMock(return_value=results or [], side_effect=error)
        return tier

    async def test_first_non_empty_tier_wins(self):
        a = self._tier("a")
        b = self._tier("b", results=["hit"])
        c = self._tier("c", results=["other"])
        results, tier = await FallbackChain([a, b, c]).search("q", SearchOptions())
        assert results == ["hit"]
        assert tier == "b"
        c.search.assert_not_awaited()

    async def test_failing_tier_cascades(self):
        a = self._tier("a", error=RuntimeError("boom"))
        b = self._tier("b", results=["hit"])
        results, tier = await FallbackChain([a, b]).search("q", SearchOptions())
        assert results == ["hit"]
        assert tier == "b"

    async def test_all_tiers_empty(self):
        chain = FallbackChain([self._tier("a"), self._tier("b", error=OSError("disk"))])
        assert await chain.search("q", SearchOptions()) == ([], None)

    async def test_configuration_error_propagates(self):
        chain = FallbackChain([self._tier("a", error=ConfigurationError("bad"))])
        with pytest.raises(ConfigurationError):
            await chain.search("q", SearchOptions())
