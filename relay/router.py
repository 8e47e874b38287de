from __future__ import annotations
"""Provider router with capability-based fallback.

The router owns one adapter per enabled, key-bearing provider and dispatches each
capability request to the candidates in configuration order until one succeeds.
Individual adapter failures are logged and swallowed; when every candidate fails
the call returns ``None`` so callers can treat it as "try later".

Reconfiguration builds a complete new adapter set and swaps it in one step, so
calls already in flight keep using the adapters they started with.
"""

import asyncio
import threading
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    NamedTuple,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

import httpx

from core.circuit_breaker import CircuitBreaker, CircuitState
from core.config import AppSettings, get_settings
from core.logging import get_logger, setup_logging
from core.monitoring import start_metrics_server
from relay.adapters import AdapterConfig, BaseAdapter, create_adapter
from relay.settings import RouterSettings, load_router_settings
from relay.transport import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, ProviderHealth
from relay.types import (
    PROVIDERS,
    AudioRequest,
    AudioResponse,
    Capability,
    ImageRequest,
    ImageResponse,
    ProviderKind,
    SearchRequest,
    SearchResponse,
    TextRequest,
    TextResponse,
    VisionRequest,
    VisionResponse,
)

__all__ = ["ProviderRouter", "build_router"]

logger = get_logger(__name__)

T = TypeVar("T")
AdapterFactory = Callable[..., BaseAdapter]

_EMPTY = object()


class _RouterState(NamedTuple):
    settings: Optional[RouterSettings]
    adapters: Dict[ProviderKind, BaseAdapter]
    breakers: Dict[ProviderKind, CircuitBreaker]


async def _replay(first: Any, stream: AsyncIterator[str]) -> AsyncIterator[str]:
    if first is not _EMPTY:
        yield first
    async for chunk in stream:
        yield chunk


async def _report_failures(stream: AsyncIterator[str], breaker: CircuitBreaker) -> AsyncIterator[str]:
    try:
        async for chunk in stream:
            yield chunk
    except Exception as e:
        await breaker.record_failure(e)
        raise


class ProviderRouter:
    """Routes capability requests across the configured provider adapters."""

    def __init__(
        self,
        settings: Optional[RouterSettings] = None,
        *,
        adapter_factory: AdapterFactory = create_adapter,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        client: Optional[httpx.AsyncClient] = None,
        use_circuit_breakers: bool = False,
        breaker_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._adapter_factory = adapter_factory
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client
        self._use_circuit_breakers = use_circuit_breakers
        self._breaker_options = dict(breaker_options or {})

        self._state = _RouterState(None, {}, {})
        self._initialized = False
        self._swap_lock = threading.Lock()
        if settings is not None:
            self.initialize(settings)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def initialize(self, settings: RouterSettings) -> None:
        """Build the adapter set from ``settings`` and swap it in."""
        adapters: Dict[ProviderKind, BaseAdapter] = {}
        breakers: Dict[ProviderKind, CircuitBreaker] = {}
        for config in settings.providers:
            if not config.is_usable:
                continue
            kind = config.provider_id
            try:
                adapters[kind] = self._adapter_factory(
                    kind,
                    AdapterConfig(
                        api_key=config.api_key,
                        base_url=config.base_url,
                        timeout=self._timeout,
                        max_retries=self._max_retries,
                    ),
                    client=self._client,
                )
            except Exception as e:
                logger.error(f"Failed to initialize provider {kind.value}: {e}")
                continue
            if self._use_circuit_breakers:
                breakers[kind] = CircuitBreaker(name=f"provider:{kind.value}", **self._breaker_options)

        with self._swap_lock:
            self._state = _RouterState(settings, adapters, breakers)
            self._initialized = True
        logger.info(
            f"Router configured with {len(adapters)} provider(s): "
            f"{', '.join(k.value for k in adapters) or 'none'}"
        )

    def update_settings(self, settings: RouterSettings) -> None:
        self.initialize(settings)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Optional[RouterSettings]:
        return self._state.settings

    def is_available(self) -> bool:
        settings = self._state.settings
        return self._initialized and settings is not None and bool(settings.enabled())

    def has_capability(self, capability: Capability) -> bool:
        return self.get_provider_for_capability(capability) is not None

    def get_provider_for_capability(self, capability: Capability) -> Optional[ProviderKind]:
        """First enabled provider, in configuration order, that declares ``capability``."""
        settings = self._state.settings
        if settings is None:
            return None
        for config in settings.providers:
            if config.enabled and PROVIDERS[config.provider_id].supports(capability):
                return config.provider_id
        return None

    def get_adapter(self, kind: ProviderKind) -> Optional[BaseAdapter]:
        return self._state.adapters.get(kind)

    def providers(self) -> List[ProviderKind]:
        return list(self._state.adapters)

    # ------------------------------------------------------------------
    # Capability dispatch
    # ------------------------------------------------------------------
    async def chat(self, request: TextRequest) -> Optional[TextResponse]:
        return await self._route_with_fallback(Capability.TEXT, lambda a: a.chat(request))

    async def vision(self, request: VisionRequest) -> Optional[VisionResponse]:
        return await self._route_with_fallback(Capability.VISION, lambda a: a.vision(request))

    async def generate_image(self, request: ImageRequest) -> Optional[ImageResponse]:
        return await self._route_with_fallback(Capability.IMAGE_GEN, lambda a: a.generate_image(request))

    async def search(self, request: SearchRequest) -> Optional[SearchResponse]:
        return await self._route_with_fallback(Capability.SEARCH, lambda a: a.search(request))

    async def analyze_audio(self, request: AudioRequest) -> Optional[AudioResponse]:
        return await self._route_with_fallback(Capability.AUDIO, lambda a: a.analyze_audio(request))

    async def stream(self, request: TextRequest) -> Optional[AsyncIterator[str]]:
        """Stream a text completion from the first provider that starts one."""
        return await self._route_with_fallback(
            Capability.TEXT, lambda a: self._prime(a.stream(request)), streaming=True
        )

    async def stream_audio(self, request: TextRequest) -> Optional[AsyncIterator[str]]:
        return await self._route_with_fallback(
            Capability.AUDIO, lambda a: self._prime(a.stream(request)), streaming=True
        )

    @staticmethod
    async def _prime(stream: AsyncIterator[str]) -> AsyncIterator[str]:
        # pull the first chunk so connect-time failures surface here
        try:
            first: Any = await stream.__anext__()
        except StopAsyncIteration:
            first = _EMPTY
        except BaseException:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            raise
        return _replay(first, stream)

    def _candidates(
        self, state: _RouterState, capability: Capability, streaming: bool = False
    ) -> List[Tuple[ProviderKind, BaseAdapter]]:
        if state.settings is None:
            return []
        candidates = []
        for config in state.settings.providers:
            if not config.is_usable:
                continue
            if not PROVIDERS[config.provider_id].supports(capability):
                continue
            adapter = state.adapters.get(config.provider_id)
            if adapter is None:
                continue
            if streaming and not adapter.supports_streaming():
                continue
            candidates.append((config.provider_id, adapter))
        return candidates

    async def _route_with_fallback(
        self,
        capability: Capability,
        call: Callable[[BaseAdapter], Awaitable[T]],
        streaming: bool = False,
    ) -> Optional[T]:
        state = self._state
        candidates = self._candidates(state, capability, streaming)
        if not candidates:
            providers = [c.summary() for c in state.settings.providers] if state.settings else []
            logger.warning(
                f"No adapters available for capability: {capability.value} "
                f"(configured providers: {providers})"
            )
            return None

        last_error: Optional[BaseException] = None
        for kind, adapter in candidates:
            breaker = state.breakers.get(kind)
            try:
                if breaker is None:
                    return await call(adapter)
                result = await breaker.execute(lambda: call(adapter))
                if streaming:
                    # the breaker only saw the first chunk
                    return _report_failures(result, breaker)
                return result
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Adapter {type(adapter).__name__} failed for {capability.value}: "
                    f"{type(e).__name__}: {e}"
                )

        logger.error(
            f"All providers failed for capability {capability.value} "
            f"({len(candidates)} tried), last error: {last_error}"
        )
        return None

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    async def check_health(self) -> Dict[ProviderKind, bool]:
        """Probe every live adapter concurrently."""
        adapters = list(self._state.adapters.items())
        results = await asyncio.gather(*(adapter.health_check() for _, adapter in adapters))
        return {kind: bool(ok) for (kind, _), ok in zip(adapters, results)}

    def get_provider_stats(self) -> Dict[ProviderKind, ProviderHealth]:
        return {kind: adapter.get_health() for kind, adapter in self._state.adapters.items()}

    def reset_provider_health(self, kind: ProviderKind) -> None:
        adapter = self._state.adapters.get(kind)
        if adapter is not None:
            adapter.reset_health()

    def breaker_states(self) -> Dict[ProviderKind, CircuitState]:
        return {kind: breaker.state for kind, breaker in self._state.breakers.items()}


def build_router(
    app_settings: Optional[AppSettings] = None,
    settings_path: Optional[Union[str, Path]] = None,
    **kwargs: Any,
) -> ProviderRouter:
    """Composition root: configure logging, load the provider list, build the router."""
    app = app_settings or get_settings()
    setup_logging(app.LOG_LEVEL, app.LOG_FILE)
    settings = load_router_settings(settings_path or app.providers_file)
    options: Dict[str, Any] = {
        "timeout": app.REQUEST_TIMEOUT,
        "max_retries": app.MAX_RETRIES,
        "use_circuit_breakers": app.CIRCUIT_BREAKER_ENABLED,
        "breaker_options": {
            "failure_threshold": app.CIRCUIT_FAILURE_THRESHOLD,
            "success_threshold": app.CIRCUIT_SUCCESS_THRESHOLD,
            "reset_timeout": app.CIRCUIT_RESET_TIMEOUT,
        },
    }
    options.update(kwargs)
    router = ProviderRouter(settings, **options)
    if app.METRICS_PORT:
        start_metrics_server(router, app.METRICS_PORT)
    return router
