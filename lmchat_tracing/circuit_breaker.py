"""
Circuit breaker for provider API calls made outside a model invocation.
Stops hammering a provider's catalog endpoint while it is failing.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitBreakerOpenError(RuntimeError):
    """Raised when circuit breaker blocks execution."""


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    - CLOSED -> OPEN: after ``failure_threshold`` consecutive failures
    - OPEN -> HALF_OPEN: once ``timeout`` seconds passed since the last failure
    - HALF_OPEN -> CLOSED on a successful probe, back to OPEN on a failed one
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        name: str = "CircuitBreaker",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.name = name

        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time: float | None = None

        self._clock = clock
        self._lock = threading.Lock()

        logger.info(
            f"CircuitBreaker '{name}' initialized: "
            f"threshold={failure_threshold}, timeout={timeout}s"
        )

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CircuitBreakerOpenError: If the circuit is OPEN
            Exception: Whatever ``func`` raises (recorded as a failure)
        """
        self._before_call()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise

        self._on_success()
        return result

    def _before_call(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            if self.last_failure_time is not None and (
                self._clock() - self.last_failure_time < self.timeout
            ):
                raise CircuitBreakerOpenError(
                    f"CircuitBreaker '{self.name}' is OPEN. Service unavailable."
                )
            logger.info(f"CircuitBreaker '{self.name}': OPEN -> HALF_OPEN")
            self.state = CircuitState.HALF_OPEN

    def _on_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info(f"CircuitBreaker '{self.name}': HALF_OPEN -> CLOSED")
            self.failure_count = 0
            self.state = CircuitState.CLOSED
            self.last_failure_time = None

    def _on_failure(self, error: Exception) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            logger.error(
                f"CircuitBreaker '{self.name}' failure "
                f"({self.failure_count}/{self.failure_threshold}): {error}"
            )

            if self.state == CircuitState.HALF_OPEN or (
                self.failure_count >= self.failure_threshold
            ):
                if self.state != CircuitState.OPEN:
                    logger.warning(f"CircuitBreaker '{self.name}': {self.state.name} -> OPEN")
                self.state = CircuitState.OPEN

    def get_state(self) -> dict:
        """Get current circuit breaker state for monitoring."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self.last_failure_time,
        }
