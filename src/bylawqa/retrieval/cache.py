"""In-process TTL + LRU cache for search results.

Entries expire after ttl_seconds. On insert, the least recently used
entry is evicted once max_entries is exceeded, and with probability
purge_probability a sweep drops every stale entry.
"""

import copy
import json
import logging
import random
import time
from collections import OrderedDict
from collections.abc import Callable

from bylawqa.core.types import CacheEntry, SearchOptions, SearchResult

logger = logging.getLogger(__name__)


def make_key(query: str, options: SearchOptions) -> str:
    """Cache key: normalised query plus every option that changes the result set."""
    filters = options.filters or {}
    return json.dumps(
        {
            "query": query.strip().lower(),
            "limit": options.limit,
            "min_score": options.min_score,
            "filters": {
                k: sorted(v) if isinstance(v, (list, tuple)) else v
                for k, v in sorted(filters.items())
            },
            "exclude": sorted(options.exclude_bylaws),
        },
        sort_keys=True,
        default=str,
    )


class ResultCache:
    def __init__(
        self,
        ttl_seconds: float = 600.0,
        max_entries: int = 100,
        purge_probability: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.purge_probability = purge_probability
        self._clock = clock
        self._rng = rng
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _is_stale(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> list[SearchResult] | None:
        """Fresh results for key, or None. A stale entry is dropped on read."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._is_stale(entry, self._clock()):
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return copy.deepcopy(entry.results)

    def set(self, key: str, results: list[SearchResult], source: str = "vector") -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(results=copy.deepcopy(results), timestamp=now, source=source)
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted %s", evicted)

        if self._rng() < self.purge_probability:
            self.purge_stale()

    def purge_stale(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._entries.items() if self._is_stale(e, now)]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("Cache purged %d stale entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
