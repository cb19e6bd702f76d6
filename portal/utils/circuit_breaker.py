"""
Circuit breaker for the outbound notification provider.

Stops calling a provider that keeps failing, then lets a single test request
through after the recovery timeout.
States: closed (normal) -> open (blocking) -> half-open (testing recovery).
"""
import threading
import time
from typing import Callable

from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)


class CircuitBreaker:
    """Thread-safe circuit breaker for external service calls."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"
        self._clock = clock
        self._lock = threading.Lock()

    def record_success(self):
        with self._lock:
            if self.state != "closed":
                logger.info(f"Circuit breaker [{self.name}] CLOSED after successful request")
            self.failures = 0
            self.state = "closed"

    def record_failure(self):
        with self._lock:
            self.failures += 1
            self.last_failure_time = self._clock()
            if self.state == "half-open" or self.failures >= self.failure_threshold:
                if self.state != "open":
                    logger.warning(
                        f"Circuit breaker [{self.name}] OPEN after {self.failures} failures"
                    )
                self.state = "open"

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == "open":
                if self._clock() - self.last_failure_time >= self.recovery_timeout:
                    self.state = "half-open"
                    logger.info(f"Circuit breaker [{self.name}] HALF-OPEN, allowing test request")
                    return True
                return False
            return True

    def reset(self):
        with self._lock:
            self.failures = 0
            self.last_failure_time = 0.0
            self.state = "closed"

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "threshold": self.failure_threshold,
        }


# Shared breaker for the EmailJS REST API
emailjs_circuit = CircuitBreaker(name="emailjs", failure_threshold=3, recovery_timeout=60)
