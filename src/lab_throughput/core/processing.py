"""Cooperative chunked processing with progress reporting.

Per-case work in an analytics run is CPU bound. ``ChunkedProcessor`` runs it
in chunks bounded by a time budget and awaits ``asyncio.sleep`` between
chunks, so other tasks on the event loop keep running during a long run.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[float], None]


class ProgressTracker:
    """Monotonic 0-100 progress reporter.

    Updates that would move progress backwards are ignored; ``reset`` starts
    a new run from zero.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.percent = 0.0

    def reset(self) -> None:
        self.percent = 0.0
        self._emit()

    def update(self, percent: float) -> float:
        """Advance to ``percent`` (clamped to 0-100) and return current progress"""
        percent = max(0.0, min(100.0, percent))
        if percent > self.percent:
            self.percent = percent
            self._emit()
        return self.percent

    def complete(self) -> None:
        self.update(100.0)

    def _emit(self) -> None:
        if self.callback is not None:
            self.callback(self.percent)


class ChunkedProcessor:
    """Runs a per-item function in time-boxed chunks.

    Usage:
        processor = ChunkedProcessor(max_chunk_ms=5, yield_interval=0.02, tracker=tracker)
        results = await processor.process(cases, replay_one)

    Args:
        max_chunk_ms: Work budget per chunk in milliseconds
        yield_interval: Seconds awaited between chunks
        tracker: Progress tracker receiving the share of processed items
    """

    def __init__(
        self,
        max_chunk_ms: float = 5.0,
        yield_interval: float = 0.02,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.max_chunk_ms = max_chunk_ms
        self.yield_interval = yield_interval
        self.tracker = tracker or ProgressTracker()

    async def process(
        self,
        items: Sequence[T],
        fn: Callable[[T], Union[R, Awaitable[R]]],
        progress_range: Tuple[float, float] = (0.0, 100.0),
    ) -> List[R]:
        """Apply ``fn`` to every item in order and return the results.

        ``fn`` may be a plain function or a coroutine function. At least one
        item is processed per chunk, however long it takes. Progress moves
        across ``progress_range`` as items complete.
        """
        results: List[R] = []
        total = len(items)
        if total == 0:
            return results

        budget = self.max_chunk_ms / 1000.0
        index = 0
        chunks = 0
        while index < total:
            chunk_start = time.perf_counter()
            while index < total:
                results.append(await _call(fn, items[index]))
                index += 1
                if time.perf_counter() - chunk_start >= budget:
                    break

            chunks += 1
            low, high = progress_range
            self.tracker.update(low + (high - low) * index / total)
            if index < total:
                await asyncio.sleep(self.yield_interval)

        logger.debug(f"Processed {total} items in {chunks} chunk(s)")
        return results

    async def process_in_batches(
        self,
        items: Sequence[T],
        batch_size: int,
        fn: Callable[[Sequence[T]], Union[List[R], Awaitable[List[R]]]],
        progress_range: Tuple[float, float] = (0.0, 100.0),
    ) -> List[R]:
        """Apply ``fn`` to fixed-size batches, yielding between batches"""
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        results: List[R] = []
        total = len(items)
        for start in range(0, total, batch_size):
            batch = items[start:start + batch_size]
            results.extend(await _call(fn, batch))
            low, high = progress_range
            self.tracker.update(low + (high - low) * min(total, start + batch_size) / total)
            if start + batch_size < total:
                await asyncio.sleep(self.yield_interval)
        return results


async def _call(fn: Callable[..., Any], arg: Any) -> Any:
    result = fn(arg)
    if inspect.isawaitable(result):
        result = await result
    return result
