"""
Async retry helper with exponential backoff and jitter, plus a circuit breaker.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from timeq.observability.telemetry import counter, log_event

T = TypeVar("T")


class AdapterError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RetryPolicy:
    stage: str
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1
    # Non-idempotent calls (POST) are retried only when the server refused them
    idempotent: bool = True
    async_sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def execute_async(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Await ``func`` until it succeeds, a non-retryable AdapterError is
        raised, or attempts run out. Cancellation propagates immediately.

        Side Effects:
            Awaits ``async_sleep_fn`` between attempts.
        """
        attempt = 0
        last_error: Exception | None = None

        while attempt < self.max_attempts:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except AdapterError as exc:
                if not self._should_retry(exc):
                    self._log_final(exc, attempt)
                    raise
                last_error = exc

            if attempt >= self.max_attempts:
                break
            await self.async_sleep_fn(self._backoff(attempt))

        assert last_error is not None
        raise last_error

    def _should_retry(self, exc: AdapterError) -> bool:
        status = exc.status_code
        if status == 429:
            return True
        if not self.idempotent:
            # A lost reply or a 5xx may hide a write the server already applied
            return False
        if status is None:
            return True
        return bool(500 <= status < 600)

    def _log_final(self, exc: AdapterError, attempt: int) -> None:
        log_event(
            "stage_error",
            stage=self.stage,
            error=str(exc),
            status=exc.status_code,
            attempt=attempt,
        )

    def _backoff(self, attempt: int) -> float:
        counter("retry_count")
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        delay += random.uniform(0, self.jitter)
        log_event("retry_scheduled", stage=self.stage, attempt=attempt, delay=round(delay, 3))
        return delay


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        if self._state == "open":
            if self.clock() - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._failures = 0
                return True
            counter("circuit_open_rate")
            log_event("circuit.open", stage=self.stage)
            return False
        return True

    def record_success(self) -> None:
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.fail_max:
            self._state = "open"
            self._opened_at = self.clock()
            counter("circuit_open_rate")
            log_event("circuit.opened", stage=self.stage, failures=self._failures)
