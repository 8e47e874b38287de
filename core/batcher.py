"""Deduplicating request batcher with exponential backoff.

Items are keyed by id; adding an id that is already pending replaces the pending
entry.  A batch is flushed when it reaches ``batch_size`` items or after
``batch_delay`` seconds without a new item, whichever comes first.  A batch whose
processing keeps failing is retried with backoff and, once the retries are used
up, put back into the pending set so nothing is lost.
"""
import asyncio
import functools
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Set, TypeVar

from core.logging import get_logger

__all__ = [
    "BatchRequest",
    "RequestBatcher",
    "backoff_delay",
    "create_request_batcher",
    "with_retry",
]

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchRequest(Generic[T]):
    """One pending item of a batch."""
    id: str
    data: T
    timestamp: float
    retries: int = 0


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry ``attempt`` (1-based): ``base * 2^(attempt-1)`` plus jitter, capped."""
    delay = base_delay * (2 ** (attempt - 1))
    jitter = random.uniform(0, base_delay)
    return min(delay + jitter, max_delay)


class RequestBatcher(Generic[T]):
    """Coalesces many small logical requests into fewer batch calls."""

    def __init__(
        self,
        process_batch: Callable[[List[BatchRequest[T]]], Awaitable[Any]],
        batch_size: int = 10,
        batch_delay: float = 1.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._process_batch = process_batch
        self.batch_size = batch_size
        self.batch_delay = batch_delay  # seconds
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

        self._pending: Dict[str, BatchRequest[T]] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    def add(self, id: str, data: T) -> None:
        """Queue ``data`` under ``id``, replacing any pending entry with the same id.

        Must be called from a running event loop.
        """
        # pop first so a re-added id moves to the end
        self._pending.pop(id, None)
        self._pending[id] = BatchRequest(id=id, data=data, timestamp=time.time(), retries=0)

        if len(self._pending) >= self.batch_size:
            self._cancel_timer()
            self._spawn_flush()
            return

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.batch_delay, self._on_timer)

    async def flush(self) -> None:
        """Cancel the pending timer and drain-and-process immediately."""
        self._cancel_timer()
        await self._process_batch_with_retry()

    def clear(self) -> None:
        """Discard pending items without processing them."""
        self._cancel_timer()
        self._pending.clear()

    def size(self) -> int:
        return len(self._pending)

    def get_items(self) -> List[BatchRequest[T]]:
        return list(self._pending.values())

    async def join(self) -> None:
        """Wait for flushes started by the size trigger or the timer."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    def _on_timer(self) -> None:
        self._timer = None
        self._spawn_flush()

    def _spawn_flush(self) -> None:
        task = asyncio.ensure_future(self._process_batch_with_retry())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _process_batch_with_retry(self) -> None:
        items = list(self._pending.values())
        self._pending.clear()
        if not items:
            return

        attempt = 0
        while attempt <= self.max_retries:
            try:
                await self._process_batch(items)
                return
            except Exception as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        f"Batch of {len(items)} items failed after {attempt} attempts, requeuing: {e}",
                        exc_info=True,
                    )
                    break
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.debug(f"Batch retry {attempt}/{self.max_retries} after {delay:.2f}s: {e}")
                await self._sleep(delay)
                for item in items:
                    item.retries += 1

        for item in items:
            # an entry re-added while the batch was in flight is newer
            self._pending.setdefault(item.id, item)


def create_request_batcher(
    process_batch: Callable[[List[BatchRequest[T]]], Awaitable[Any]], **options: Any
) -> RequestBatcher[T]:
    """Factory for creating batchers."""
    return RequestBatcher(process_batch, **options)


def with_retry(
    fn: Callable[..., Awaitable[R]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Callable[..., Awaitable[R]]:
    """Wrap an async callable with backoff-with-jitter retries; re-raises the last error."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> R:
        attempt = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception:
                attempt += 1
                if attempt > max_retries:
                    raise
                await sleep(backoff_delay(attempt, base_delay, max_delay))

    return wrapper
