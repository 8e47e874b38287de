"""Tests for the resilient HTTP transport and the adapter health counters."""
import httpx
import pytest
from unittest.mock import AsyncMock, patch

from core.errors import AuthenticationError, RateLimitError, TransportError, UpstreamError
from relay.transport import AdapterHealth, ResilientTransport

URL = "https://api.example.test/v1/thing"


class DroppedStream(httpx.AsyncByteStream):
    """Response body that yields some lines and then loses the connection."""

    def __init__(self, *chunks, error=None):
        self.chunks = chunks
        self.error = error or httpx.ReadError("connection reset")

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        raise self.error


class Recorder:
    """MockTransport handler that replays a list of responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes[min(len(self.requests), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _transport(handler, max_retries=2):
    health = AdapterHealth("test")
    sleep = AsyncMock()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = ResilientTransport("test", health, timeout=5.0, max_retries=max_retries, client=client, sleep=sleep)
    return transport, health, sleep


class TestStatusClassification:

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        handler = Recorder(httpx.Response(200, json={"ok": True}))
        transport, health, sleep = _transport(handler)

        response = await transport.fetch_with_retry("GET", URL)

        assert response.json() == {"ok": True}
        assert len(handler.requests) == 1
        snapshot = health.snapshot()
        assert snapshot.request_count == 1
        assert snapshot.error_count == 0
        assert snapshot.last_request_time > 0
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_401_is_never_retried(self):
        handler = Recorder(httpx.Response(401, text="bad key"))
        transport, health, sleep = _transport(handler)

        with pytest.raises(AuthenticationError):
            await transport.fetch_with_retry("GET", URL)

        assert len(handler.requests) == 1
        assert health.snapshot().error_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_403_is_never_retried(self):
        handler = Recorder(httpx.Response(403))
        transport, _, _ = _transport(handler)

        with pytest.raises(AuthenticationError):
            await transport.fetch_with_retry("GET", URL)

        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_429_retries_with_retry_after_then_raises(self):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "1"}))
        transport, health, sleep = _transport(handler, max_retries=2)

        with pytest.raises(RateLimitError) as exc_info:
            await transport.fetch_with_retry("GET", URL)

        assert len(handler.requests) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 1.0]
        assert exc_info.value.retry_after == 1.0
        snapshot = health.snapshot()
        assert snapshot.request_count == 3
        assert snapshot.error_count == 3

    @pytest.mark.asyncio
    async def test_429_without_header_waits_default(self):
        handler = Recorder(httpx.Response(429), httpx.Response(200, json={}))
        transport, _, sleep = _transport(handler)

        await transport.fetch_with_retry("GET", URL)

        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_429_with_decimal_header_truncates_to_seconds(self):
        handler = Recorder(
            httpx.Response(429, headers={"Retry-After": "1.5"}),
            httpx.Response(200, json={}),
        )
        transport, _, sleep = _transport(handler)

        await transport.fetch_with_retry("GET", URL)

        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_429_with_http_date_header_waits_default(self):
        handler = Recorder(
            httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            httpx.Response(200, json={}),
        )
        transport, _, sleep = _transport(handler)

        await transport.fetch_with_retry("GET", URL)

        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_server_error_backs_off_exponentially_then_raises(self):
        handler = Recorder(httpx.Response(503, text="unavailable"))
        transport, health, sleep = _transport(handler, max_retries=3)

        with pytest.raises(UpstreamError) as exc_info:
            await transport.fetch_with_retry("POST", URL, json={})

        assert len(handler.requests) == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2, 4]
        assert exc_info.value.status_code == 503
        assert exc_info.value.body == "unavailable"
        assert health.snapshot().error_count == 4

    @pytest.mark.asyncio
    async def test_recovers_after_server_error(self):
        handler = Recorder(httpx.Response(500), httpx.Response(200, json={"v": 1}))
        transport, health, _ = _transport(handler)

        response = await transport.fetch_with_retry("GET", URL)

        assert response.json() == {"v": 1}
        snapshot = health.snapshot()
        assert snapshot.request_count == 2
        assert snapshot.error_count == 1
        assert snapshot.error_rate == 0.5

    @pytest.mark.asyncio
    async def test_zero_retries_override(self):
        handler = Recorder(httpx.Response(500))
        transport, _, sleep = _transport(handler, max_retries=3)

        with pytest.raises(UpstreamError):
            await transport.fetch_with_retry("GET", URL, retries=0)

        assert len(handler.requests) == 1
        sleep.assert_not_called()


class TestNetworkFailures:

    @pytest.mark.asyncio
    async def test_timeout_is_retried_then_wrapped(self):
        handler = Recorder(httpx.ReadTimeout("slow"))
        transport, health, sleep = _transport(handler, max_retries=1)

        with pytest.raises(TransportError, match="timed out"):
            await transport.fetch_with_retry("GET", URL)

        assert len(handler.requests) == 2
        assert sleep.await_count == 1
        assert health.snapshot().error_count == 2

    @pytest.mark.asyncio
    async def test_connect_error_then_success(self):
        handler = Recorder(httpx.ConnectError("refused"), httpx.Response(200, json={}))
        transport, health, _ = _transport(handler)

        await transport.fetch_with_retry("GET", URL)

        snapshot = health.snapshot()
        assert snapshot.request_count == 2
        assert snapshot.error_count == 1

    @pytest.mark.asyncio
    async def test_per_call_client_when_none_injected(self):
        handler = Recorder(httpx.Response(200, json={"ok": 1}))
        mock_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = ResilientTransport("test", AdapterHealth("test"), sleep=AsyncMock())

        with patch("relay.transport.httpx.AsyncClient", return_value=mock_client) as factory:
            response = await transport.fetch_with_retry("GET", URL)

        factory.assert_called_once_with(timeout=transport.timeout)
        assert response.json() == {"ok": 1}


class TestStreaming:

    @pytest.mark.asyncio
    async def test_stream_lines_yields_lines(self):
        handler = Recorder(httpx.Response(200, text="data: one\n\ndata: two\n"))
        transport, health, _ = _transport(handler)

        lines = [line async for line in transport.stream_lines("POST", URL, json={})]

        assert [line for line in lines if line] == ["data: one", "data: two"]
        assert health.snapshot().request_count == 1

    @pytest.mark.asyncio
    async def test_stream_retries_before_first_line(self):
        handler = Recorder(httpx.Response(502, text="bad gateway"), httpx.Response(200, text="ok\n"))
        transport, health, sleep = _transport(handler)

        lines = [line async for line in transport.stream_lines("GET", URL)]

        assert lines == ["ok"]
        assert sleep.await_count == 1
        assert health.snapshot().error_count == 1

    @pytest.mark.asyncio
    async def test_connection_lost_mid_stream_is_transport_error(self):
        handler = Recorder(httpx.Response(200, stream=DroppedStream(b"data: one\n")))
        transport, health, _ = _transport(handler)
        lines = []

        with pytest.raises(TransportError, match="interrupted"):
            async for line in transport.stream_lines("POST", URL, json={}):
                lines.append(line)

        assert lines == ["data: one"]
        assert health.snapshot().request_count == 1
        assert health.snapshot().error_count == 1

    @pytest.mark.asyncio
    async def test_read_timeout_mid_stream_is_transport_error(self):
        stream = DroppedStream(b"data: one\n", error=httpx.ReadTimeout("read timed out"))
        transport, health, _ = _transport(Recorder(httpx.Response(200, stream=stream)))

        with pytest.raises(TransportError, match="timed out"):
            async for _ in transport.stream_lines("GET", URL):
                pass

        assert health.snapshot().error_count == 1

    @pytest.mark.asyncio
    async def test_stream_auth_failure(self):
        handler = Recorder(httpx.Response(401))
        transport, _, _ = _transport(handler)

        with pytest.raises(AuthenticationError):
            async for _ in transport.stream_lines("GET", URL):
                pass


class TestAdapterHealth:

    def test_error_rate_zero_without_requests(self):
        snapshot = AdapterHealth("p").snapshot()
        assert snapshot.error_rate == 0.0
        assert snapshot.last_request_time == 0.0

    def test_reset_zeroes_counters(self):
        health = AdapterHealth("p")
        health.record_request()
        health.record_error()
        health.reset()

        snapshot = health.snapshot()
        assert snapshot.request_count == 0
        assert snapshot.error_count == 0

    def test_as_dict(self):
        health = AdapterHealth("p")
        health.record_request()
        data = health.snapshot().as_dict()
        assert set(data) == {"provider", "request_count", "error_count", "error_rate", "last_request_time"}
        assert data["provider"] == "p"
