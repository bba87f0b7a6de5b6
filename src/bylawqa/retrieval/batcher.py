"""Request batcher: coalesce concurrent calls into one upstream batch call.

Callers ``await batcher.add(item)`` and get back the result at their
position in the processor's output. A batch is flushed when it reaches
max_batch_size or max_wait_ms after its first item arrived, whichever
comes first. A failing batch is retried as a whole with exponential
backoff and jitter; once retries are exhausted every caller in that batch
gets the same exception.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from bylawqa.core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

BatchProcessor = Callable[[list[T]], Awaitable[list[R]]]


class BatchSizeMismatch(RuntimeError):
    """The processor returned a different number of results than it was given."""


class RequestBatcher(Generic[T, R]):
    def __init__(
        self,
        processor: BatchProcessor,
        max_batch_size: int = 5,
        max_wait_ms: float = 50.0,
        retry_count: int = 3,
        retry_delay: float = 0.3,
        name: str = "default",
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        self.processor = processor
        self.max_batch_size = max_batch_size
        self.max_wait_ms = max_wait_ms
        self.retry_count = retry_count  # retries after the first attempt
        self.retry_delay = retry_delay
        self.name = name
        self._queue: list[tuple[T, asyncio.Future]] = []
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def add(self, item: T) -> R:
        if self._closed:
            raise RuntimeError(f"Batcher {self.name!r} is closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((item, future))

        if len(self._queue) >= self.max_batch_size:
            self._flush()
        elif len(self._queue) == 1:
            self._timer = loop.call_later(self.max_wait_ms / 1000, self._flush)

        return await future

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._queue:
            return
        batch, self._queue = self._queue, []
        task = asyncio.get_running_loop().create_task(self._run_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, inputs: list[T]) -> list[R]:
        results = await self.processor(inputs)
        if len(results) != len(inputs):
            raise BatchSizeMismatch(
                f"Batch processor for {self.name!r} returned {len(results)} results for {len(inputs)} inputs"
            )
        return results

    async def _run_batch(self, batch: list[tuple[T, asyncio.Future]]) -> None:
        inputs = [item for item, _ in batch]
        logger.debug("Batch %s: processing %d items", self.name, len(inputs))
        try:
            results = await retry_with_backoff(
                lambda: self._process(inputs),
                max_attempts=self.retry_count + 1,
                base_delay=self.retry_delay,
                max_delay=None,
                jitter=True,
                label=f"batch {self.name}",
            )
        except Exception as e:
            logger.warning("Batch %s failed for %d callers: %s", self.name, len(batch), e)
            for _, future in batch:
                if not future.done():
                    future.set_exception(e)
            return

        for (_, future), result in zip(batch, results):
            if not future.done():
                future.set_result(result)

    async def aclose(self) -> None:
        """Stop accepting items, flush what's queued and wait for in-flight batches."""
        self._closed = True
        self._flush()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class BatcherRegistry:
    """One batcher per namespace, so unrelated call sites don't share batching state."""

    def __init__(self, **defaults: Any):
        self._defaults = defaults
        self._batchers: dict[str, RequestBatcher] = {}

    def get(self, namespace: str, processor: BatchProcessor, **options: Any) -> RequestBatcher:
        batcher = self._batchers.get(namespace)
        if batcher is None:
            batcher = RequestBatcher(processor, name=namespace, **{**self._defaults, **options})
            self._batchers[namespace] = batcher
        return batcher

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._batchers

    async def aclose(self) -> None:
        for batcher in self._batchers.values():
            await batcher.aclose()
        self._batchers.clear()
