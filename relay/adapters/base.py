"""Adapter contract shared by every provider integration."""
import asyncio
import functools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar, Dict, List, Optional

import httpx

from core.errors import CapabilityUnsupportedError, ProviderError, UpstreamError
from core.logging import get_logger
from relay.transport import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    AdapterHealth,
    ProviderHealth,
    ResilientTransport,
)
from relay.types import (
    PROVIDERS,
    AudioRequest,
    AudioResponse,
    Capability,
    ImageRequest,
    ImageResponse,
    Message,
    ProviderInfo,
    ProviderKind,
    SearchRequest,
    SearchResponse,
    TextRequest,
    TextResponse,
    VisionRequest,
    VisionResponse,
)

logger = get_logger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048


@dataclass(frozen=True)
class AdapterConfig:
    """Connection settings of one adapter instance."""
    api_key: str
    base_url: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    model: Optional[str] = None


def provider_call(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Convert any failure of an adapter coroutine into a ProviderError."""

    @functools.wraps(method)
    async def wrapper(self: "BaseAdapter", *args: Any, **kwargs: Any) -> Any:
        try:
            return await method(self, *args, **kwargs)
        except Exception as e:
            error = self._translate_error(e)
            if error is e:
                raise
            raise error from e

    return wrapper


def provider_stream(method: Callable[..., AsyncIterator[str]]) -> Callable[..., AsyncIterator[str]]:
    """Streaming counterpart of :func:`provider_call` for async generators."""

    @functools.wraps(method)
    async def wrapper(self: "BaseAdapter", *args: Any, **kwargs: Any) -> AsyncIterator[str]:
        try:
            async for chunk in method(self, *args, **kwargs):
                yield chunk
        except Exception as e:
            error = self._translate_error(e)
            if error is e:
                raise
            raise error from e

    return wrapper


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the payload of every ``data:`` line until ``[DONE]``."""
    async for line in lines:
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if data == "[DONE]":
            return
        if data:
            yield data


def decode_chunk(data: str) -> Optional[Dict[str, Any]]:
    """Parse one streamed JSON chunk; malformed chunks are skipped."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed stream chunk: {data[:80]!r}")
        return None
    return parsed if isinstance(parsed, dict) else None


class BaseAdapter(ABC):
    """Base class for provider adapters.

    Subclasses implement the capabilities their provider offers; everything else
    fails fast with CapabilityUnsupportedError.  All upstream I/O goes through
    :attr:`transport`, which keeps :attr:`health` up to date.
    """

    kind: ClassVar[ProviderKind]
    display_name: ClassVar[str]
    # provider-specific wording for selected upstream statuses
    error_messages: ClassVar[Dict[int, str]] = {}

    def __init__(
        self,
        config: AdapterConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not config.api_key:
            raise ValueError(f"{self.display_name} adapter requires an API key")
        self.config = config
        self.base_url = (config.base_url or self.info.default_base_url or "").rstrip("/")
        self.health = AdapterHealth(self.kind.value)
        self.transport = ResilientTransport(
            self.kind.value,
            self.health,
            timeout=config.timeout,
            max_retries=config.max_retries,
            client=client,
            sleep=sleep,
        )

    @property
    def info(self) -> ProviderInfo:
        return PROVIDERS[self.kind]

    @property
    def provider_id(self) -> ProviderKind:
        return self.kind

    def supports(self, capability: Capability) -> bool:
        return self.info.supports(capability)

    # ------------------------------------------------------------------
    # Capability operations
    # ------------------------------------------------------------------
    @abstractmethod
    async def chat(self, request: TextRequest) -> TextResponse:
        """Text completion."""

    async def vision(self, request: VisionRequest) -> VisionResponse:
        raise self._unsupported(Capability.VISION)

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        raise self._unsupported(Capability.IMAGE_GEN)

    async def search(self, request: SearchRequest) -> SearchResponse:
        raise self._unsupported(Capability.SEARCH)

    async def analyze_audio(self, request: AudioRequest) -> AudioResponse:
        raise self._unsupported(Capability.AUDIO)

    def supports_streaming(self) -> bool:
        return False

    async def stream(self, request: TextRequest) -> AsyncIterator[str]:
        """Lazily yield text chunks. Finite and single-use."""
        raise self._unsupported(Capability.TEXT, "streaming")
        yield  # pragma: no cover

    async def health_check(self) -> bool:
        """Probe the upstream once. Never raises."""
        try:
            await self._probe()
            return True
        except ProviderError as e:
            logger.error(f"{self.display_name} health check failed: {e}")
            return False

    @abstractmethod
    async def _probe(self) -> None:
        """Issue the lightest request that proves the credentials work."""

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    def get_health(self) -> ProviderHealth:
        return self.health.snapshot()

    def reset_health(self) -> None:
        self.health.reset()

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------
    async def fetch_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self.transport.fetch_with_retry(method, self._url(path), **kwargs)
        return response.json()

    def stream_lines(self, method: str, path: str, **kwargs: Any) -> AsyncIterator[str]:
        return self.transport.stream_lines(method, self._url(path), **kwargs)

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def _model(self, default: str) -> str:
        return self.config.model or default

    @staticmethod
    def _convert_messages(messages: List[Message]) -> List[Dict[str, Any]]:
        """Convert Message objects to the common role/content wire format."""
        return [{"role": msg.role.value, "content": msg.content} for msg in messages]

    @staticmethod
    def _temperature(value: Optional[float]) -> float:
        return DEFAULT_TEMPERATURE if value is None else value

    def _require(self, capability: Capability) -> None:
        if not self.supports(capability):
            raise self._unsupported(capability)

    def _unsupported(self, capability: Capability, operation: Optional[str] = None) -> CapabilityUnsupportedError:
        # counted like any other failed call, without I/O
        self.health.record_request()
        self.health.record_error()
        return CapabilityUnsupportedError(operation or capability.value, self.kind.value)

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, UpstreamError):
            message = self.error_messages.get(error.status_code or 0)
            if message is None:
                return error
            return UpstreamError(
                f"{self.display_name} {message}",
                self.kind.value,
                status_code=error.status_code,
                body=error.body,
            )
        if isinstance(error, ProviderError):
            return error
        # decoding failures after a successful response
        self.health.record_error()
        return UpstreamError(f"{self.display_name} error: {error}", self.kind.value)
