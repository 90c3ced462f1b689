"""Tests for HttpClient: retries, breaker, classification, header propagation."""

import json

import httpx
import pytest

from purchase_middleware.errors import AppError, ErrorKind
from purchase_middleware.http_client import HttpClient, RequestDescriptor
from purchase_middleware.resilience import CircuitState
from purchase_middleware.tracing import request_context

BASE_URL = "https://upstream.test"


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class Upstream:
    """MockTransport handler returning the given responses in order (last repeats)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_client(upstream, max_retries=3, **kwargs):
    sleep = SleepRecorder()
    client = HttpClient(
        BASE_URL,
        timeout=1.0,
        max_retries=max_retries,
        transport=httpx.MockTransport(upstream),
        sleep=sleep,
        **kwargs,
    )
    return client, sleep


def get(url="/resource", **kwargs):
    return RequestDescriptor(method="GET", url=url, **kwargs)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_returns_decoded_json(self):
        upstream = Upstream(httpx.Response(200, json={"id": "p-1"}))
        client, _ = make_client(upstream)

        assert await client.request(get()) == {"id": "p-1"}
        assert str(upstream.requests[0].url) == f"{BASE_URL}/resource"

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        client, _ = make_client(Upstream(httpx.Response(204)))

        assert await client.request(get()) is None

    @pytest.mark.asyncio
    async def test_sends_json_body(self):
        upstream = Upstream(httpx.Response(200, json={}))
        client, _ = make_client(upstream)

        await client.request(RequestDescriptor(method="POST", url="/purchases", json={"a": 1}))
        assert upstream.requests[0].method == "POST"
        assert json.loads(upstream.requests[0].read()) == {"a": 1}

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        upstream = Upstream(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        client, sleep = make_client(upstream)
        descriptor = get()

        assert await client.request(descriptor) == {"ok": True}
        assert len(upstream.requests) == 2
        assert descriptor.metadata.retry_count == 1
        assert len(sleep.delays) == 1


class TestRetries:
    @pytest.mark.asyncio
    async def test_always_503_exhausts_retries(self):
        upstream = Upstream(httpx.Response(503))
        client, sleep = make_client(upstream, max_retries=3)
        descriptor = get()

        with pytest.raises(AppError) as exc_info:
            await client.request(descriptor)

        error = exc_info.value
        assert error.kind == ErrorKind.RETRY_EXHAUSTED
        assert error.status_code == 503
        assert len(upstream.requests) == 4
        assert descriptor.metadata.retry_count == 3
        assert descriptor.metadata.exhausted is True
        assert sum(sleep.delays) >= 0.2 + 0.4 + 0.8
        for attempt, delay in enumerate(sleep.delays, start=1):
            assert (2**attempt) * 0.1 <= delay < (2**attempt) * 0.1 + 0.1

    @pytest.mark.asyncio
    async def test_non_retryable_status_fails_immediately(self):
        upstream = Upstream(httpx.Response(400, json={"error": "bad"}))
        client, sleep = make_client(upstream)

        with pytest.raises(AppError) as exc_info:
            await client.request(get("/purchases/1"))

        error = exc_info.value
        assert error.kind == ErrorKind.UPSTREAM_4XX
        assert error.status_code == 400
        assert error.details == {
            "method": "GET",
            "url": "/purchases/1",
            "baseURL": BASE_URL,
            "status": 400,
        }
        assert len(upstream.requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_connection_errors_default_to_503(self):
        upstream = Upstream(httpx.ConnectError("refused"))
        client, _ = make_client(upstream, max_retries=2)

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == ErrorKind.RETRY_EXHAUSTED
        assert exc_info.value.status_code == 503
        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_custom_retryable_statuses(self):
        upstream = Upstream(httpx.Response(503))
        client, _ = make_client(upstream, retryable_status_codes={502})

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == ErrorKind.UPSTREAM_5XX
        assert len(upstream.requests) == 1


class TestClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, kind",
        [
            (429, ErrorKind.RATE_LIMIT),
            (500, ErrorKind.UPSTREAM_5XX),
            (502, ErrorKind.UPSTREAM_5XX),
            (404, ErrorKind.UPSTREAM_4XX),
            (409, ErrorKind.UPSTREAM_4XX),
        ],
    )
    async def test_status_without_retries(self, status, kind):
        client, _ = make_client(Upstream(httpx.Response(status)), max_retries=0)

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == status
        assert exc_info.value.details["status"] == status

    @pytest.mark.asyncio
    async def test_timeout(self):
        client, _ = make_client(Upstream(httpx.ConnectTimeout("too slow")), max_retries=0)

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.status_code == 504
        assert exc_info.value.details["status"] is None
        assert isinstance(exc_info.value.cause, httpx.ConnectTimeout)

    @pytest.mark.asyncio
    async def test_malformed_json_is_internal_error(self):
        upstream = Upstream(httpx.Response(200, content=b"<html>oops</html>"))
        client, _ = make_client(upstream)

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR
        assert exc_info.value.status_code == 500
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_redirect_is_internal_error(self):
        client, _ = make_client(Upstream(httpx.Response(302, headers={"location": "/elsewhere"})))

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_original_exception_is_chained(self):
        client, _ = make_client(Upstream(httpx.Response(404)), max_retries=0)

        with pytest.raises(AppError) as exc_info:
            await client.request(get())

        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self):
        upstream = Upstream(httpx.Response(503))
        client, _ = make_client(upstream, max_retries=0)

        with pytest.raises(AppError) as first:
            await client.request(get())
        assert first.value.kind == ErrorKind.UPSTREAM_5XX
        assert client.breaker.state == CircuitState.OPEN

        with pytest.raises(AppError) as second:
            await client.request(get())
        assert second.value.kind == ErrorKind.RETRY_EXHAUSTED
        assert second.value.status_code == 503
        assert second.value.message == "Circuit breaker open"
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_client_errors_count_toward_error_rate(self):
        upstream = Upstream(httpx.Response(400))
        client, _ = make_client(upstream, max_retries=0)

        with pytest.raises(AppError) as first:
            await client.request(get())
        assert first.value.kind == ErrorKind.UPSTREAM_4XX
        assert client.breaker.state == CircuitState.OPEN

        for _ in range(4):
            with pytest.raises(AppError) as exc_info:
                await client.request(get())
            assert exc_info.value.message == "Circuit breaker open"

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_successes_keep_rate_below_threshold(self):
        upstream = Upstream(
            httpx.Response(200, json={}),
            httpx.Response(200, json={}),
            httpx.Response(404),
            httpx.Response(200, json={}),
        )
        client, _ = make_client(upstream, max_retries=0)

        await client.request(get())
        await client.request(get())
        with pytest.raises(AppError):
            await client.request(get())

        assert client.breaker.state == CircuitState.CLOSED
        assert await client.request(get()) == {}

    @pytest.mark.asyncio
    async def test_half_open_trial_closes_on_success(self):
        now = [0.0]
        upstream = Upstream(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        client, _ = make_client(upstream, max_retries=0, reset_timeout=30.0, clock=lambda: now[0])

        with pytest.raises(AppError):
            await client.request(get())
        assert client.breaker.state == CircuitState.OPEN

        now[0] = 30.0
        assert await client.request(get()) == {"ok": True}
        assert client.breaker.state == CircuitState.CLOSED


class TestCorrelationHeaders:
    @pytest.mark.asyncio
    async def test_forwards_ambient_ids(self):
        upstream = Upstream(httpx.Response(200, json={}))
        client, _ = make_client(upstream)

        with request_context(trace_id="trace-1", request_id="req-1"):
            await client.request(get())

        headers = upstream.requests[0].headers
        assert headers["x-trace-id"] == "trace-1"
        assert headers["x-request-id"] == "req-1"

    @pytest.mark.asyncio
    async def test_never_overrides_caller_headers(self):
        upstream = Upstream(httpx.Response(200, json={}))
        client, _ = make_client(upstream)

        with request_context(trace_id="trace-1", request_id="req-1"):
            await client.request(get(headers={"X-Trace-Id": "caller-trace"}))

        headers = upstream.requests[0].headers
        assert headers["x-trace-id"] == "caller-trace"
        assert headers["x-request-id"] == "req-1"

    @pytest.mark.asyncio
    async def test_does_not_fabricate_ids(self):
        upstream = Upstream(httpx.Response(200, json={}))
        client, _ = make_client(upstream)

        await client.request(get())

        headers = upstream.requests[0].headers
        assert "x-trace-id" not in headers
        assert "x-request-id" not in headers
