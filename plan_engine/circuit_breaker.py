"""Three-state circuit breaker shared by the upstream API clients.

CLOSED   normal operation, failures are counted
OPEN     calls fail fast until ``recovery_timeout`` has elapsed
HALF_OPEN a limited number of trial calls decide whether to close again
"""

import logging
import threading
import time
from enum import Enum

from .exceptions import ApiErrorType, PlanApiError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:

    def __init__(self, name: str, failure_threshold: int = 5,
                 recovery_timeout: float = 60.0, half_open_max_calls: int = 1):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._lock = threading.Lock()
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state

    def call(self, fn, *args, **kwargs):
        """Run ``fn`` through the breaker; raises PlanApiError when tripped."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                if time.time() - self._last_failure_time > self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
                    self._half_open_calls = 0
                    logger.info(f"{self.name}: circuit half-open, allowing trial call")
                else:
                    raise PlanApiError(
                        ApiErrorType.CIRCUIT_OPEN,
                        "Circuit breaker is open - too many recent failures",
                        {"breaker": self.name},
                        False,
                    )
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    raise PlanApiError(
                        ApiErrorType.CIRCUIT_HALF_OPEN,
                        "Circuit breaker half-open call limit exceeded",
                        {"breaker": self.name},
                        False,
                    )
                self._half_open_calls += 1

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"{self.name}: circuit closed")
            self._failure_count = 0
            self._half_open_calls = 0
            self._state = CircuitState.CLOSED

    def _on_failure(self):
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.time()
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"{self.name}: circuit breaker tripped after "
                        f"{self._failure_count} consecutive failures"
                    )
                self._state = CircuitState.OPEN

    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "half_open_calls": self._half_open_calls,
        }

    def reset(self):
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._half_open_calls = 0
