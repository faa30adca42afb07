"""Process-wide deployment circuit breaker."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

from deployguard.domain.models.base import ValueObject


logger = structlog.get_logger(__name__)


class CircuitBreakerState(ValueObject):
    """Read-only view of the breaker; the live counters stay private."""

    failure_count: int
    last_failure_at: float | None
    is_open: bool
    threshold: int
    reset_timeout_seconds: float


class CircuitBreaker:
    """Counts consecutive pipeline failures and blocks attempts once tripped.

    All mutators run under one lock so concurrent pipeline executions never
    lose a failure count. ``clock`` returns monotonic seconds and can be
    replaced in tests.
    """

    def __init__(
        self,
        threshold: int = 3,
        reset_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._threshold = threshold
        self._reset_timeout = reset_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._failure_count = 0
        self._last_failure_at: float | None = None
        self._is_open = False

    def allow_attempt(self) -> bool:
        """Return whether a deployment may start now.

        While open, the breaker resets itself once more than the reset timeout
        has passed since the last failure.
        """
        with self._lock:
            if not self._is_open:
                return True
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if elapsed > self._reset_timeout:
                self._close()
                logger.info("circuit_breaker_reset", reason="cooldown_elapsed", elapsed=elapsed)
                return True
            return False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            if not self._is_open and self._failure_count >= self._threshold:
                self._is_open = True
                logger.error(
                    "circuit_breaker_opened",
                    failure_count=self._failure_count,
                    threshold=self._threshold,
                )

    def record_success(self) -> None:
        with self._lock:
            if self._failure_count or self._is_open:
                logger.info("circuit_breaker_reset", reason="success")
            self._close()

    def reset(self) -> None:
        """Operator override: close the breaker immediately."""
        with self._lock:
            self._close()
            logger.warning("circuit_breaker_reset", reason="manual")

    def state(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                is_open=self._is_open,
                threshold=self._threshold,
                reset_timeout_seconds=self._reset_timeout,
            )

    def retry_after(self) -> float:
        """Seconds until an open breaker will allow attempts again (0 when closed)."""
        with self._lock:
            if not self._is_open or self._last_failure_at is None:
                return 0.0
            remaining = self._reset_timeout - (self._clock() - self._last_failure_at)
            return max(remaining, 0.0)

    def _close(self) -> None:
        self._failure_count = 0
        self._last_failure_at = None
        self._is_open = False
