"""Retry and circuit-breaker layers for outbound calls.

Both layers wrap an async "send" callable and know nothing about HTTP beyond
the status code carried by `httpx.HTTPStatusError`. `HttpClient` stacks them:

    breaker.call(retry.call(send, request))

so the breaker sees one outcome per logical call, after retries.

Breaker states:
    CLOSED: calls pass through, outcomes are counted in a rolling window
    OPEN: calls are rejected without touching the transport
    HALF_OPEN: one trial call decides between CLOSED and OPEN
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class RetryMetadata:
    """Retry state of one logical call, shared by all of its attempts."""

    retry_count: int = 0
    exhausted: bool = False


def status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def compute_delay(attempt: int) -> float:
    """Backoff before retry number `attempt` (1-based), in seconds.

    2**attempt * 100ms plus a uniform jitter in [0, 100)ms.
    """
    base_ms = (2**attempt) * 100
    jitter_ms = random.random() * 100
    return (base_ms + jitter_ms) / 1000


class RetryPolicy:
    """Retry transient failures with exponential backoff and jitter.

    A failure is transient when it has no HTTP status (transport error or
    timeout) or its status is in `retryable_status_codes`. Anything else is
    re-raised on the first occurrence.

    Args:
        max_retries: Retries allowed per logical call (attempts = max_retries + 1).
        retryable_status_codes: Statuses worth retrying.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        max_retries: int,
        retryable_status_codes: Iterable[int] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.retryable_status_codes = frozenset(
            DEFAULT_RETRYABLE_STATUS_CODES if retryable_status_codes is None else retryable_status_codes
        )
        self._sleep = sleep

    def is_transient(self, error: BaseException) -> bool:
        if isinstance(error, httpx.TransportError):
            return True
        status = status_of(error)
        return status is not None and status in self.retryable_status_codes

    async def call(
        self,
        send: Callable[[Any], Awaitable[T]],
        request: Any,
        metadata: RetryMetadata,
    ) -> T:
        """Run `send(request)` until it succeeds or may not be retried.

        `metadata` is updated in place: `retry_count` grows with each retry and
        `exhausted` is set when a transient failure outlived the retry budget.
        """
        while True:
            try:
                return await send(request)
            except Exception as e:
                transient = self.is_transient(e)
                if not transient or metadata.retry_count >= self.max_retries:
                    metadata.exhausted = transient and metadata.retry_count > 0
                    raise

                metadata.retry_count += 1
                delay = compute_delay(metadata.retry_count)
                logger.warning(
                    "[Retry] attempt %d/%d in %.3fs after %s (status=%s)",
                    metadata.retry_count,
                    self.max_retries,
                    delay,
                    type(e).__name__,
                    status_of(e),
                )
                await self._sleep(delay)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of dispatching when the breaker rejects a call."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit '{name}' is open, rejecting request")
        self.name = name


@dataclass
class CircuitBreaker:
    """Error-rate circuit breaker with a single-bucket rolling window.

    Attributes:
        name: Identifier used in logs (usually the upstream base URL).
        error_threshold_percent: Opens when failures/calls*100 is above this.
        volume_threshold: Minimum calls in the window before it may open.
        reset_timeout: Seconds spent OPEN before a trial call is allowed.
        rolling_window: Seconds after which the counters start over.
        is_failure: Decides whether an exception counts against the upstream.
        clock: Monotonic time source.
    """

    name: str = "default"
    error_threshold_percent: float = 50.0
    volume_threshold: int = 1
    reset_timeout: float = 30.0
    rolling_window: float = 10.0
    is_failure: Callable[[BaseException], bool] = lambda error: True
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _window_started: float | None = field(default=None, init=False)
    _calls: int = field(default=0, init=False)
    _failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_reset_timeout()
            return self._state

    @property
    def failure_rate(self) -> float:
        with self._lock:
            self._roll_window()
            if self._calls == 0:
                return 0.0
            return self._failures / self._calls * 100

    def _roll_window(self) -> None:
        now = self.clock()
        if self._window_started is None or now - self._window_started >= self.rolling_window:
            self._window_started = now
            self._calls = 0
            self._failures = 0

    def _check_reset_timeout(self) -> None:
        if self._state == CircuitState.OPEN and self.clock() - self._opened_at >= self.reset_timeout:
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.warning("[Breaker] %s: %s -> %s", self.name, self._state.value, new_state.value)
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        elif new_state == CircuitState.CLOSED:
            self._window_started = None
            self._roll_window()
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        with self._lock:
            self._check_reset_timeout()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                return
            self._roll_window()
            self._calls += 1

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                return
            self._roll_window()
            self._calls += 1
            self._failures += 1
            if (
                self._state == CircuitState.CLOSED
                and self._calls >= self.volume_threshold
                and self._failures / self._calls * 100 > self.error_threshold_percent
            ):
                self._transition_to(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run `func` through the breaker.

        Raises:
            CircuitOpenError: The breaker is open (or a half-open trial is
                already running); `func` is not called.
        """
        if not self.allow_request():
            raise CircuitOpenError(self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                self.record_failure()
            else:
                self.record_success()
            raise
        except BaseException:
            # Cancelled: no verdict, but free the half-open slot.
            with self._lock:
                self._trial_in_flight = False
            raise
        self.record_success()
        return result
