"""Tests for the deduplicating request batcher."""
import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from core.batcher import (
    BatchRequest,
    RequestBatcher,
    backoff_delay,
    create_request_batcher,
    with_retry,
)


def _ids(batch):
    return [item.id for item in batch]


@pytest.fixture
def sleep():
    return AsyncMock()


class TestAdd:

    @pytest.mark.asyncio
    async def test_same_id_is_deduplicated_last_write_wins(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, batch_size=10, batch_delay=60.0, sleep=sleep)

        batcher.add("a", {"v": 1})
        batcher.add("a", {"v": 2})
        assert batcher.size() == 1

        await batcher.flush()

        process.assert_awaited_once()
        batch = process.await_args.args[0]
        assert len(batch) == 1
        assert batch[0].id == "a"
        assert batch[0].data == {"v": 2}
        assert batch[0].retries == 0

    @pytest.mark.asyncio
    async def test_readding_moves_item_to_the_end(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, batch_size=10, batch_delay=60.0, sleep=sleep)

        batcher.add("a", 1)
        batcher.add("b", 2)
        batcher.add("a", 3)

        assert _ids(batcher.get_items()) == ["b", "a"]
        batcher.clear()

    @pytest.mark.asyncio
    async def test_size_trigger_flushes(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, batch_size=3, batch_delay=60.0, sleep=sleep)

        for i in range(3):
            batcher.add(str(i), i)
        await batcher.join()

        process.assert_awaited_once()
        assert _ids(process.await_args.args[0]) == ["0", "1", "2"]
        assert batcher.size() == 0

    @pytest.mark.asyncio
    async def test_timer_trigger_flushes(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, batch_size=10, batch_delay=0.01, sleep=sleep)

        batcher.add("a", 1)
        batcher.add("b", 2)
        await asyncio.sleep(0.05)
        await batcher.join()

        process.assert_awaited_once()
        assert _ids(process.await_args.args[0]) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_clear_discards_pending_items(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, batch_size=10, batch_delay=0.01, sleep=sleep)

        batcher.add("a", 1)
        batcher.clear()
        await asyncio.sleep(0.03)
        await batcher.join()

        process.assert_not_called()
        assert batcher.size() == 0

    @pytest.mark.asyncio
    async def test_flush_on_empty_batcher_is_a_noop(self, sleep):
        process = AsyncMock()
        batcher = RequestBatcher(process, sleep=sleep)

        await batcher.flush()

        process.assert_not_called()


class TestRetry:

    @pytest.mark.asyncio
    async def test_total_failure_requeues_all_items(self, sleep):
        process = AsyncMock(side_effect=RuntimeError("upstream down"))
        batcher = RequestBatcher(
            process, batch_size=10, batch_delay=60.0, max_retries=2, base_delay=1.0, sleep=sleep
        )
        batcher.add("a", 1)
        batcher.add("b", 2)

        await batcher.flush()

        assert process.await_count == 3
        assert sleep.await_count == 2
        assert _ids(batcher.get_items()) == ["a", "b"]
        assert all(item.retries == 2 for item in batcher.get_items())

        process.side_effect = None
        process.reset_mock()
        await batcher.flush()

        process.assert_awaited_once()
        batch = process.await_args.args[0]
        assert _ids(batch) == ["a", "b"]
        assert [item.data for item in batch] == [1, 2]
        assert batcher.size() == 0

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failure(self, sleep):
        process = AsyncMock(side_effect=[RuntimeError("blip"), None])
        batcher = RequestBatcher(process, batch_delay=60.0, max_retries=3, sleep=sleep)
        batcher.add("a", 1)

        await batcher.flush()

        assert process.await_count == 2
        assert batcher.size() == 0

    @pytest.mark.asyncio
    async def test_requeue_keeps_entry_added_during_flight(self, sleep):
        batcher = None

        async def process(batch):
            batcher.add("a", "newer")
            raise RuntimeError("fail")

        batcher = RequestBatcher(process, batch_size=10, batch_delay=60.0, max_retries=0, sleep=sleep)
        batcher.add("a", "older")
        batcher.add("b", "other")

        await batcher.flush()

        items = {item.id: item.data for item in batcher.get_items()}
        assert items == {"a": "newer", "b": "other"}
        batcher.clear()

    @pytest.mark.asyncio
    async def test_backoff_delays_grow(self, sleep):
        process = AsyncMock(side_effect=RuntimeError("down"))
        batcher = RequestBatcher(
            process, batch_delay=60.0, max_retries=3, base_delay=1.0, max_delay=30.0, sleep=sleep
        )
        batcher.add("a", 1)

        with patch("core.batcher.random.uniform", return_value=0.5):
            await batcher.flush()

        assert [c.args[0] for c in sleep.await_args_list] == [1.5, 2.5, 4.5]
        batcher.clear()


class TestHelpers:

    def test_backoff_delay_is_capped(self):
        with patch("core.batcher.random.uniform", return_value=0.0):
            assert backoff_delay(1, 1.0, 30.0) == 1.0
            assert backoff_delay(4, 1.0, 30.0) == 8.0
            assert backoff_delay(10, 1.0, 30.0) == 30.0

    def test_backoff_delay_jitter_bounds(self):
        for _ in range(20):
            delay = backoff_delay(2, 1.0, 30.0)
            assert 2.0 <= delay <= 3.0

    def test_create_request_batcher(self):
        batcher = create_request_batcher(AsyncMock(), batch_size=5)
        assert isinstance(batcher, RequestBatcher)
        assert batcher.batch_size == 5

    def test_batch_request_defaults(self):
        item = BatchRequest(id="x", data=None, timestamp=0.0)
        assert item.retries == 0

    @pytest.mark.asyncio
    async def test_with_retry_returns_after_recovery(self, sleep):
        fn = AsyncMock(side_effect=[RuntimeError("one"), RuntimeError("two"), "done"])
        wrapped = with_retry(fn, max_retries=3, sleep=sleep)

        assert await wrapped("arg") == "done"
        assert fn.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_with_retry_reraises_last_error(self, sleep):
        fn = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("last")])
        wrapped = with_retry(fn, max_retries=1, sleep=sleep)

        with pytest.raises(RuntimeError, match="last"):
            await wrapped()
