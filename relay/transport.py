from __future__ import annotations
"""Resilient HTTP transport shared by all provider adapters.

Every physical attempt is counted on the owning adapter's health counters.
Status handling, in order:

* 401/403 fail immediately with AuthenticationError.
* 429 sleeps for ``Retry-After`` seconds (2 by default) and retries, or raises
  RateLimitError once the retries are used up.
* other non-success statuses back off ``2 ** (max_retries - retries)`` seconds and
  retry, or raise UpstreamError carrying status and body.
* timeouts and network errors back off the same way, then raise TransportError.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx

from core.errors import AuthenticationError, RateLimitError, TransportError, UpstreamError
from core.logging import get_logger

__all__ = ["AdapterHealth", "ProviderHealth", "ResilientTransport"]

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_AFTER = 2.0


@dataclass(frozen=True)
class ProviderHealth:
    """Read-only health snapshot of one adapter."""
    provider: str
    request_count: int
    error_count: int
    error_rate: float
    last_request_time: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AdapterHealth:
    """Thread-safe request/error counters of one adapter."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self._request_count = 0
        self._error_count = 0
        self._last_request_time = 0.0
        self._lock = threading.Lock()

    def record_request(self) -> None:
        with self._lock:
            self._request_count += 1
            self._last_request_time = time.time()

    def record_error(self) -> None:
        with self._lock:
            self._error_count += 1

    def reset(self) -> None:
        with self._lock:
            self._request_count = 0
            self._error_count = 0

    def snapshot(self) -> ProviderHealth:
        with self._lock:
            requests = self._request_count
            errors = self._error_count
            return ProviderHealth(
                provider=self.provider,
                request_count=requests,
                error_count=errors,
                error_rate=errors / requests if requests > 0 else 0.0,
                last_request_time=self._last_request_time,
            )


class ResilientTransport:
    """Retry/backoff/timeout wrapper around ``httpx.AsyncClient``."""

    def __init__(
        self,
        provider: str,
        health: AdapterHealth,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.health = health
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client
        self._sleep = sleep

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def fetch_with_retry(
        self,
        method: str,
        url: str,
        *,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying per the classification rules. Returns a read response."""
        async with self._client_scope() as client:
            return await self._send_with_retry(
                client, method, url, retries=retries, timeout=timeout,
                stream=False, **request_kwargs,
            )

    async def stream_lines(
        self,
        method: str,
        url: str,
        *,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
        **request_kwargs: Any,
    ) -> AsyncIterator[str]:
        """Open a streaming request with the same retry rules and yield its lines."""
        async with self._client_scope() as client:
            response = await self._send_with_retry(
                client, method, url, retries=retries, timeout=timeout,
                stream=True, **request_kwargs,
            )
            try:
                async for line in response.aiter_lines():
                    yield line
            except httpx.TimeoutException as e:
                self.health.record_error()
                raise TransportError(f"Stream timed out after {timeout or self.timeout}s", self.provider) from e
            except httpx.TransportError as e:
                self.health.record_error()
                raise TransportError(f"Stream interrupted: {e}", self.provider) from e
            finally:
                await response.aclose()

    # ------------------------------------------------------------------
    async def _send_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        retries: Optional[int],
        timeout: Optional[float],
        stream: bool,
        **request_kwargs: Any,
    ) -> httpx.Response:
        remaining = self.max_retries if retries is None else retries
        timeout = self.timeout if timeout is None else timeout

        while True:
            self.health.record_request()
            try:
                request = client.build_request(method, url, timeout=timeout, **request_kwargs)
                response = await client.send(request, stream=stream)
            except httpx.TimeoutException as e:
                self.health.record_error()
                if remaining > 0:
                    logger.warning(f"{self.provider}: request timed out after {timeout}s, retrying")
                    await self._backoff(remaining)
                    remaining -= 1
                    continue
                raise TransportError(f"Request timed out after {timeout}s", self.provider) from e
            except Exception as e:
                self.health.record_error()
                if remaining > 0:
                    logger.warning(f"{self.provider}: request failed ({e}), retrying")
                    await self._backoff(remaining)
                    remaining -= 1
                    continue
                raise TransportError(f"Request failed: {e}", self.provider) from e

            if response.is_success:
                return response

            self.health.record_error()
            status = response.status_code
            if stream:
                await response.aread()
                await response.aclose()

            if status in (401, 403):
                raise AuthenticationError(self.provider)

            if status == 429:
                retry_after = self._retry_after(response)
                if remaining > 0:
                    logger.warning(f"{self.provider}: rate limited, retrying in {retry_after}s")
                    await self._sleep(retry_after)
                    remaining -= 1
                    continue
                raise RateLimitError(self.provider, retry_after=retry_after)

            if remaining > 0:
                logger.warning(f"{self.provider}: HTTP {status}, retrying")
                await self._backoff(remaining)
                remaining -= 1
                continue

            body = response.text
            raise UpstreamError(
                f"HTTP {status}: {body}", self.provider, status_code=status, body=body
            )

    async def _backoff(self, remaining: int) -> None:
        await self._sleep(2 ** max(self.max_retries - remaining, 0))

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        value = response.headers.get("Retry-After")
        if value is None:
            return DEFAULT_RETRY_AFTER
        try:
            return float(int(float(value.strip())))
        except (ValueError, OverflowError):
            return DEFAULT_RETRY_AFTER
