from __future__ import annotations
"""Generic three-state circuit breaker for async operations.

The breaker counts consecutive failures while CLOSED and opens the circuit once
``failure_threshold`` is reached.  While OPEN every call fails fast with
:class:`~core.errors.CircuitOpenError` until ``reset_timeout`` seconds have passed;
the next call then moves the breaker to HALF_OPEN and is let through as a probe.
Only one such call runs at a time; other calls fail fast until it settles.
``success_threshold`` consecutive probe successes close the circuit, a single probe
failure re-opens it.

Nothing here knows about AI providers; any awaitable-returning callable can be
guarded.
"""

import asyncio
import functools
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from core.errors import CircuitOpenError
from core.logging import get_logger

__all__ = [
    "CircuitState",
    "CircuitBreaker",
    "create_circuit_breaker",
    "with_circuit_breaker",
]

logger = get_logger(__name__)

T = TypeVar("T")
StateListener = Callable[["CircuitState", "CircuitState"], None]
FailureListener = Callable[[BaseException], None]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"        # normal operation
    OPEN = "OPEN"            # failing fast
    HALF_OPEN = "HALF_OPEN"  # probing for recovery


class CircuitBreaker:
    """Failure-isolation guard around fallible async operations."""

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 60.0,
        *,
        name: str = "circuit",
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateListener] = None,
        on_failure: Optional[FailureListener] = None,
    ) -> None:
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("thresholds must be >= 1")
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout  # seconds
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = 0.0
        self._next_attempt_time = 0.0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

        self._state_listeners: List[StateListener] = []
        self._failure_listeners: List[FailureListener] = []
        if on_state_change is not None:
            self._state_listeners.append(on_state_change)
        if on_failure is not None:
            self._failure_listeners.append(on_failure)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_time(self) -> float:
        return self._last_failure_time

    @property
    def next_attempt_time(self) -> float:
        return self._next_attempt_time

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "next_attempt_time": self._next_attempt_time,
        }

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to transitions. Returns a callable that unsubscribes."""
        self._state_listeners.append(listener)
        return functools.partial(self._remove, self._state_listeners, listener)

    def on_failure(self, listener: FailureListener) -> Callable[[], None]:
        """Subscribe to recorded failures. Returns a callable that unsubscribes."""
        self._failure_listeners.append(listener)
        return functools.partial(self._remove, self._failure_listeners, listener)

    @staticmethod
    def _remove(listeners: List[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under the breaker and return its result."""
        trial = await self._before_call()
        try:
            result = await operation()
        except Exception as exc:
            await self._after_failure(exc, trial)
            raise
        except BaseException:
            # a cancelled trial call frees the slot without counting
            if trial:
                self._trial_in_flight = False
            raise
        await self._after_success(trial)
        return result

    async def _before_call(self) -> bool:
        """Admit or reject a call. Returns True when the call is the HALF_OPEN trial call."""
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if self._clock() < self._next_attempt_time:
                    raise CircuitOpenError(
                        f"Circuit breaker '{self.name}' is OPEN. Please try again later."
                    )
                self._transition_to(CircuitState.HALF_OPEN)
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(
                        f"Circuit breaker '{self.name}' is HALF_OPEN with a trial call in flight."
                    )
                self._trial_in_flight = True
                return True
            return False

    async def _after_success(self, trial: bool = False) -> None:
        async with self._lock:
            if trial:
                self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    async def _after_failure(self, exc: BaseException, trial: bool = False) -> None:
        async with self._lock:
            if trial:
                self._trial_in_flight = False
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._notify_failure(exc)
            if self._state is CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def record_failure(self, exc: BaseException) -> None:
        """Count a failure observed outside :meth:`execute`, such as a broken stream."""
        await self._after_failure(exc)

    def reset(self) -> None:
        """Force CLOSED with both counters zeroed, from any state."""
        self._transition_to(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0
        self._trial_in_flight = False

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if new_state is CircuitState.OPEN:
            # re-opening from HALF_OPEN needs a fresh deadline too
            self._next_attempt_time = self._clock() + self.reset_timeout
            self._success_count = 0
        if old_state is new_state:
            return

        self._state = new_state
        if new_state is CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state is CircuitState.HALF_OPEN:
            self._success_count = 0

        if new_state is CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker '{self.name}' opened after {self._failure_count} failures"
            )
        else:
            logger.debug(f"Circuit breaker '{self.name}' {old_state.value} -> {new_state.value}")
        for listener in list(self._state_listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception(f"State listener of circuit breaker '{self.name}' failed")

    def _notify_failure(self, exc: BaseException) -> None:
        for listener in list(self._failure_listeners):
            try:
                listener(exc)
            except Exception:
                logger.exception(f"Failure listener of circuit breaker '{self.name}' failed")


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def create_circuit_breaker(**overrides: Any) -> CircuitBreaker:
    """Create a breaker with the default thresholds, overridden by keyword."""
    config: Dict[str, Any] = {
        "failure_threshold": 5,
        "success_threshold": 2,
        "reset_timeout": 60.0,
    }
    config.update(overrides)
    return CircuitBreaker(**config)


def with_circuit_breaker(
    fn: Callable[..., Awaitable[T]], **config: Any
) -> Callable[..., Awaitable[T]]:
    """Wrap an async callable so every invocation goes through one shared breaker."""
    breaker = create_circuit_breaker(**config)

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await breaker.execute(lambda: fn(*args, **kwargs))

    wrapper.breaker = breaker  # type: ignore[attr-defined]
    return wrapper
