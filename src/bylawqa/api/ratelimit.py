"""Per-client request limit for the search route.

A fixed one-minute window per client key, held in a bounded LRU so a
flood of distinct clients can't grow it without limit.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        max_clients: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._windows: OrderedDict[str, tuple[float, int]] = OrderedDict()

    def allow(self, key: str) -> bool:
        """Count one request for key; False once the window's quota is spent."""
        if self.max_requests <= 0:
            return True
        now = self._clock()
        started, count = self._windows.pop(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
        self._windows[key] = (started, count + 1)
        while len(self._windows) > self.max_clients:
            self._windows.popitem(last=False)
        return count < self.max_requests


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def limit_search(request: Request) -> None:
    """Route dependency: 429 when the caller is over the search limit."""
    limiter: RateLimiter | None = getattr(request.app.state, "search_limiter", None)
    if limiter is None:
        return
    key = client_key(request)
    if not limiter.allow(key):
        logger.warning("Rate limit exceeded for %s", key)
        raise HTTPException(status_code=429, detail="Rate limit exceeded, please try again later")
