"""Tests for the TTL + LRU result cache."""

from bylawqa.core.types import ChunkMetadata, SearchOptions, SearchResult
from bylawqa.retrieval.cache import ResultCache, make_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _result(id="r1", score=0.9):
    return SearchResult(id=id, text="text", metadata=ChunkMetadata("4742", "Tree Protection", "3"), score=score)


def _cache(clock, **kwargs):
    kwargs.setdefault("rng", lambda: 1.0)  # never sweep unless a test asks
    return ResultCache(clock=clock, **kwargs)


class TestMakeKey:
    def test_query_is_normalised(self):
        opts = SearchOptions()
        assert make_key("  Dog Leash ", opts) == make_key("dog leash", opts)

    def test_options_change_key(self):
        assert make_key("q", SearchOptions(limit=5)) != make_key("q", SearchOptions(limit=6))
        assert make_key("q", SearchOptions(min_score=0.6)) != make_key("q", SearchOptions(min_score=0.5))
        assert make_key("q", SearchOptions()) != make_key("q", SearchOptions(exclude_bylaws=("4742",)))

    def test_filter_order_does_not_matter(self):
        a = SearchOptions(filters={"category": "trees", "bylaw_number": ["4742", "3210"]})
        b = SearchOptions(filters={"bylaw_number": ["3210", "4742"], "category": "trees"})
        assert make_key("q", a) == make_key("q", b)


class TestResultCache:
    def test_miss_then_hit(self):
        clock = FakeClock()
        cache = _cache(clock)
        assert cache.get("k") is None
        cache.set("k", [_result()])
        hit = cache.get("k")
        assert [r.id for r in hit] == ["r1"]
        assert cache.hits == 1
        assert cache.misses == 1

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = _cache(clock, ttl_seconds=600)
        cache.set("k", [_result()])
        clock.now += 599
        assert cache.get("k") is not None
        clock.now += 2
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_lru_eviction(self):
        clock = FakeClock()
        cache = _cache(clock, max_entries=2)
        cache.set("a", [_result("a")])
        cache.set("b", [_result("b")])
        cache.get("a")  # a is now most recent
        cache.set("c", [_result("c")])
        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None

    def test_probabilistic_sweep_on_set(self):
        clock = FakeClock()
        cache = _cache(clock, ttl_seconds=10, purge_probability=0.1, rng=lambda: 0.05)
        cache.set("old", [_result()])
        clock.now += 60
        cache.set("new", [_result()])
        assert len(cache) == 1

    def test_no_sweep_when_roll_misses(self):
        clock = FakeClock()
        cache = _cache(clock, ttl_seconds=10, purge_probability=0.1, rng=lambda: 0.5)
        cache.set("old", [_result()])
        clock.now += 60
        cache.set("new", [_result()])
        assert len(cache) == 2
        assert cache.purge_stale() == 1

    def test_returned_results_are_copies(self):
        cache = _cache(FakeClock())
        cache.set("k", [_result(score=0.9)])
        first = cache.get("k")
        first[0].score = 0.1
        assert cache.get("k")[0].score == 0.9

    def test_clear(self):
        cache = _cache(FakeClock())
        cache.set("k", [])
        cache.clear()
        assert len(cache) == 0
