from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque

from booking_funnel.infra.metrics import metrics


logger = logging.getLogger("booking_funnel.circuit")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreakerOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """Fails fast once a provider (Stripe, the email API) keeps erroring inside a rolling window.

    Exceptions listed in ``ignored_exceptions`` are the caller's fault, not the
    provider's (a declined card, a missing API key), so they pass through
    without counting against the provider. After ``recovery_seconds`` up to
    ``half_open_max_calls`` trial calls are let through; one success closes the
    circuit, one failure opens it again.
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        recovery_seconds: float = 30.0,
        window_seconds: float = 60.0,
        half_open_max_calls: int = 1,
        timeout_seconds: float | None = None,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_seconds = max(0.01, recovery_seconds)
        self.window_seconds = max(0.01, window_seconds)
        self.half_open_max_calls = max(1, half_open_max_calls)
        self.timeout_seconds = None if timeout_seconds is None else max(0.01, timeout_seconds)
        self.ignored_exceptions = ignored_exceptions
        self._lock = asyncio.Lock()
        self.reset()

    @property
    def state(self) -> str:
        return self._state

    def reset(self) -> None:
        self._failures: Deque[float] = deque()
        self._opened_at = 0.0
        self._trial_calls = 0
        self._set_state(CLOSED)

    async def call(self, fn: Callable[..., Any | Awaitable[Any]], *args, **kwargs) -> Any:
        await self._admit()
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.timeout_seconds)
        except self.ignored_exceptions:
            await self._record_success()
            raise
        except Exception as exc:  # noqa: BLE001
            await self._record_failure()
            logger.warning(
                "circuit_failure",
                extra={"extra": {"circuit": self.name, "state": self._state, "error": type(exc).__name__}},
            )
            raise
        await self._record_success()
        return result

    def _set_state(self, state: str) -> None:
        self._state = state
        metrics.record_circuit_state(self.name, state)

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == OPEN:
                if time.monotonic() - self._opened_at < self.recovery_seconds:
                    raise CircuitBreakerOpenError(f"circuit_open:{self.name}")
                self._trial_calls = 0
                self._set_state(HALF_OPEN)
            if self._state == HALF_OPEN:
                if self._trial_calls >= self.half_open_max_calls:
                    raise CircuitBreakerOpenError(f"circuit_half_open_limit:{self.name}")
                self._trial_calls += 1

    async def _record_failure(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._failures.append(now)
            while self._failures and self._failures[0] < now - self.window_seconds:
                self._failures.popleft()
            if self._state == HALF_OPEN or len(self._failures) >= self.failure_threshold:
                self._opened_at = now
                self._trial_calls = 0
                self._set_state(OPEN)
                logger.warning("circuit_opened", extra={"extra": {"circuit": self.name}})

    async def _record_success(self) -> None:
        async with self._lock:
            self._failures.clear()
            self._trial_calls = 0
            if self._state != CLOSED:
                logger.info("circuit_closed", extra={"extra": {"circuit": self.name}})
                self._set_state(CLOSED)
