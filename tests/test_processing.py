"""Tests for chunked processing and progress tracking."""

import pytest

from lab_throughput.core.processing import ChunkedProcessor, ProgressTracker


class TestProgressTracker:
    """Progress only moves forward within a run."""

    def test_backwards_updates_are_ignored(self):
        seen = []
        tracker = ProgressTracker(seen.append)

        tracker.update(40)
        tracker.update(25)
        tracker.update(60)

        assert seen == [40.0, 60.0]
        assert tracker.percent == 60.0

    def test_clamped_to_range(self):
        tracker = ProgressTracker()
        assert tracker.update(140) == 100.0
        assert tracker.update(-5) == 100.0

    def test_reset_starts_over(self):
        seen = []
        tracker = ProgressTracker(seen.append)
        tracker.update(80)
        tracker.reset()
        tracker.update(10)

        assert seen == [80.0, 0.0, 10.0]

    def test_complete(self):
        tracker = ProgressTracker()
        tracker.complete()
        assert tracker.percent == 100.0


class TestChunkedProcessor:
    """Items are processed in order across yielded chunks."""

    @pytest.mark.asyncio
    async def test_preserves_order(self):
        processor = ChunkedProcessor(max_chunk_ms=0, yield_interval=0)
        results = await processor.process(list(range(25)), lambda n: n * 2)
        assert results == [n * 2 for n in range(25)]

    @pytest.mark.asyncio
    async def test_async_function(self):
        async def double(n):
            return n * 2

        processor = ChunkedProcessor(yield_interval=0)
        assert await processor.process([1, 2, 3], double) == [2, 4, 6]

    @pytest.mark.asyncio
    async def test_empty_input(self):
        processor = ChunkedProcessor()
        assert await processor.process([], lambda n: n) == []
        assert processor.tracker.percent == 0.0

    @pytest.mark.asyncio
    async def test_progress_reaches_end_of_range(self):
        seen = []
        processor = ChunkedProcessor(max_chunk_ms=0, yield_interval=0, tracker=ProgressTracker(seen.append))

        await processor.process(list(range(4)), lambda n: n, progress_range=(0.0, 70.0))

        assert seen == sorted(seen)
        assert seen[-1] == 70.0
        assert len(seen) == 4

    @pytest.mark.asyncio
    async def test_batches(self):
        batches = []

        def handle(batch):
            batches.append(list(batch))
            return [sum(batch)]

        processor = ChunkedProcessor(yield_interval=0)
        results = await processor.process_in_batches([1, 2, 3, 4, 5], 2, handle)

        assert batches == [[1, 2], [3, 4], [5]]
        assert results == [3, 7, 5]
        assert processor.tracker.percent == 100.0

    @pytest.mark.asyncio
    async def test_batches_fill_their_progress_range(self):
        seen = []
        processor = ChunkedProcessor(yield_interval=0, tracker=ProgressTracker(seen.append))
        await processor.process_in_batches(list(range(120)), 50, list, progress_range=(60.0, 65.0))

        assert seen == pytest.approx([60.0 + 5.0 * 50 / 120, 60.0 + 5.0 * 100 / 120, 65.0])

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self):
        processor = ChunkedProcessor()
        with pytest.raises(ValueError):
            await processor.process_in_batches([1], 0, lambda batch: batch)
