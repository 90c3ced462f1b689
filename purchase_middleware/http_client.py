"""Resilient HTTP client for calling third-party APIs.

One `HttpClient` per upstream base URL. Each call:
    add correlation headers -> circuit breaker -> retry loop -> httpx

and every failure, whatever its shape, leaves `request()` as an `AppError`.
Adapters only depend on the `RequestExecutor` protocol, so tests can hand
them a fake instead of a real client.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Protocol

import httpx

from .errors import AppError, ErrorKind
from .resilience import CircuitBreaker, CircuitOpenError, RetryMetadata, RetryPolicy, status_of
from .tracing import correlation_headers

logger = logging.getLogger(__name__)


@dataclass
class RequestDescriptor:
    """One logical outbound call. `metadata` survives across its retries."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    params: dict[str, Any] | None = None
    metadata: RetryMetadata = field(default_factory=RetryMetadata)


class RequestExecutor(Protocol):
    async def request(self, descriptor: RequestDescriptor) -> Any: ...


class MalformedResponseError(Exception):
    """2xx response whose body is not valid JSON."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Upstream returned a non-JSON body (status={response.status_code})")
        self.response = response


class HttpClient:
    """Executor with retries, circuit breaking and error classification.

    Args:
        base_url: Upstream base URL; descriptors carry paths relative to it.
        timeout: Per-attempt transport timeout in seconds.
        max_retries: Retries per logical call.
        retryable_status_codes: Overrides the default {408,429,500,502,503,504}.
        error_threshold_percent / reset_timeout / rolling_window: breaker tuning.
        transport: Optional httpx transport (tests pass `httpx.MockTransport`).
        sleep: Backoff sleep; tests pass a recorder instead of `asyncio.sleep`.
        clock: Breaker time source.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float,
        max_retries: int,
        retryable_status_codes: Iterable[int] | None = None,
        *,
        error_threshold_percent: float = 50.0,
        reset_timeout: float = 30.0,
        rolling_window: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.base_url = base_url
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.retry = RetryPolicy(max_retries, retryable_status_codes, sleep=sleep)

        breaker_kwargs: dict[str, Any] = {}
        if clock is not None:
            breaker_kwargs["clock"] = clock
        self.breaker = CircuitBreaker(
            name=base_url,
            error_threshold_percent=error_threshold_percent,
            reset_timeout=reset_timeout,
            rolling_window=rolling_window,
            **breaker_kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, descriptor: RequestDescriptor) -> Any:
        """Execute the call and return the decoded JSON body (None if empty).

        Raises:
            AppError: for every failure, classified by `_to_app_error`.
        """
        descriptor.headers = self._with_correlation_headers(descriptor.headers)

        try:
            return await self.breaker.call(self.retry.call, self._send, descriptor, descriptor.metadata)
        except Exception as e:
            error = self._to_app_error(e, descriptor)
            logger.warning(
                "[HttpClient] %s %s%s failed: %s status=%s retries=%d",
                descriptor.method,
                self.base_url,
                descriptor.url,
                error.kind.value,
                error.status_code,
                descriptor.metadata.retry_count,
            )
            raise error from e

    @staticmethod
    def _with_correlation_headers(headers: dict[str, str]) -> dict[str, str]:
        merged = dict(headers)
        present = {name.lower() for name in merged}
        for name, value in correlation_headers().items():
            if name not in present:
                merged[name] = value
        return merged

    async def _send(self, descriptor: RequestDescriptor) -> Any:
        response = await self._client.request(
            descriptor.method,
            descriptor.url,
            headers=descriptor.headers,
            json=descriptor.json,
            params=descriptor.params,
        )
        response.raise_for_status()

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(response) from e

    def _to_app_error(self, error: Exception, descriptor: RequestDescriptor) -> AppError:
        """Map any failure to an AppError. First matching rule wins."""
        if isinstance(error, AppError):
            return error

        status = status_of(error)
        if isinstance(error, MalformedResponseError):
            status = error.response.status_code
        details = {
            "method": descriptor.method,
            "url": descriptor.url,
            "baseURL": self.base_url,
            "status": status,
        }

        if isinstance(error, CircuitOpenError):
            return AppError("Circuit breaker open", ErrorKind.RETRY_EXHAUSTED, 503, details, error)

        if descriptor.metadata.exhausted:
            return AppError(
                "Retry attempts exhausted", ErrorKind.RETRY_EXHAUSTED, status or 503, details, error
            )

        if isinstance(error, httpx.TransportError):
            return AppError("Request to upstream service timed out", ErrorKind.TIMEOUT, 504, details, error)

        if status == 429:
            return AppError("Upstream service rate limited the request", ErrorKind.RATE_LIMIT, 429, details, error)

        if status is not None and status >= 500:
            return AppError("Upstream service responded with 5xx", ErrorKind.UPSTREAM_5XX, status, details, error)

        if status is not None and 400 <= status < 500:
            return AppError("Upstream service responded with 4xx", ErrorKind.UPSTREAM_4XX, status, details, error)

        return AppError("Unexpected upstream error", ErrorKind.INTERNAL_ERROR, 500, details, error)
