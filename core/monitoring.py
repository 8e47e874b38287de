import threading
from typing import Any, Dict, Iterator, Optional, Set, Tuple

from prometheus_client import start_http_server
from prometheus_client.core import REGISTRY, CounterMetricFamily, GaugeMetricFamily
from prometheus_client.registry import CollectorRegistry

from core.logging import get_logger

logger = get_logger(__name__)

# Numeric encoding of circuit states for the relay_circuit_state gauge.
CIRCUIT_STATE_VALUES = {
    'CLOSED': 0,
    'HALF_OPEN': 1,
    'OPEN': 2,
}

def _label(key: Any) -> str:
    return str(getattr(key, 'value', key))

class ProviderHealthCollector:
    """
    Prometheus collector reading the router's health surface on every scrape.
    The router is duck-typed: it needs get_provider_stats() and, optionally,
    breaker_states().
    """
    def __init__(self, router: Any):
        self.router = router

    def collect(self) -> Iterator[Any]:
        requests = CounterMetricFamily(
            'relay_provider_requests', 'Upstream attempts per provider', labels=['provider'])
        errors = CounterMetricFamily(
            'relay_provider_errors', 'Failed upstream calls per provider', labels=['provider'])
        error_rate = GaugeMetricFamily(
            'relay_provider_error_rate', 'Errors divided by requests', labels=['provider'])
        last_request = GaugeMetricFamily(
            'relay_provider_last_request_timestamp', 'Epoch seconds of the last attempt', labels=['provider'])

        for kind, health in self.router.get_provider_stats().items():
            provider = _label(kind)
            requests.add_metric([provider], health.request_count)
            errors.add_metric([provider], health.error_count)
            error_rate.add_metric([provider], health.error_rate)
            last_request.add_metric([provider], health.last_request_time)

        yield requests
        yield errors
        yield error_rate
        yield last_request

        breaker_states = getattr(self.router, 'breaker_states', None)
        states: Dict[Any, Any] = breaker_states() if breaker_states else {}
        if states:
            circuit = GaugeMetricFamily(
                'relay_circuit_state', 'Circuit state (0 closed, 1 half-open, 2 open)', labels=['provider'])
            for kind, state in states.items():
                circuit.add_metric([_label(kind)], CIRCUIT_STATE_VALUES[_label(state)])
            yield circuit

def register_collector(router: Any, registry: Optional[CollectorRegistry] = None) -> ProviderHealthCollector:
    """Registers a ProviderHealthCollector for the router and returns it."""
    collector = ProviderHealthCollector(router)
    (registry if registry is not None else REGISTRY).register(collector)
    return collector

# One collector on the global registry per process; rebuilt routers take it over.
_collector: Optional[ProviderHealthCollector] = None
_listening: Set[Tuple[str, int]] = set()
_exporter_lock = threading.Lock()

def start_metrics_server(router: Any, port: int, addr: str = '127.0.0.1') -> ProviderHealthCollector:
    """
    Starts the Prometheus exporter, or points the running one at a new router.
    Each (addr, port) is bound at most once per process.
    """
    global _collector
    with _exporter_lock:
        if _collector is None:
            _collector = register_collector(router)
        else:
            _collector.router = router

        if (addr, port) in _listening:
            logger.info(f"Metrics exporter on {addr}:{port} now reports the new router")
            return _collector
        # Bind to 127.0.0.1 by default to ensure the port is not exposed externally.
        start_http_server(port, addr=addr)
        _listening.add((addr, port))
        logger.info(f"Metrics exporter listening on {addr}:{port}")
        return _collector
