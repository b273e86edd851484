"""Per-dependency circuit breakers.

Each Redis-backed service and the completion provider own one breaker. Calls
run inside :meth:`CircuitBreaker.guard`; only the dependency's own error types
count as failures, so a bug in our code never opens a circuit.
"""

import logging
import time
from contextlib import contextmanager
from enum import Enum
from threading import Lock

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised by :meth:`CircuitBreaker.guard` instead of calling the dependency."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit '{name}' is open, retry in {retry_in:.1f}s")


class CircuitBreaker:
    """Stops calling a dependency after consecutive failures.

    Once ``recovery_timeout`` has passed since the circuit opened, a single
    trial call is let through; its outcome closes or reopens the circuit.
    """

    def __init__(
        self,
        name: str,
        trips_on: tuple[type[BaseException], ...],
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
    ):
        self.name = name
        self.trips_on = trips_on
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._lock = Lock()
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    def _state(self, now: float) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if now - self._opened_at < self.recovery_timeout:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state(time.monotonic())

    def _acquire(self) -> None:
        with self._lock:
            now = time.monotonic()
            state = self._state(now)
            if state is CircuitState.CLOSED:
                return
            if state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                logger.info(f"Circuit '{self.name}' letting a trial call through")
                return
            retry_in = max(0.0, self.recovery_timeout - (now - self._opened_at))
        raise CircuitOpenError(self.name, retry_in)

    def _succeeded(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info(f"Circuit '{self.name}' recovered, now CLOSED")
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def _failed(self, error: BaseException) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            # A failed trial reopens at once; a closed circuit waits for the threshold.
            if self._opened_at is not None or self._failures >= self.failure_threshold:
                self._opened_at = time.monotonic()
                logger.warning(
                    f"Circuit '{self.name}' OPEN after {self._failures} failures "
                    f"(last: {type(error).__name__})"
                )

    def _abandoned(self) -> None:
        with self._lock:
            self._trial_in_flight = False

    @contextmanager
    def guard(self):
        """Run the enclosed dependency call under this breaker.

        Raises:
            CircuitOpenError: If the circuit is open, before the body runs
        """
        self._acquire()
        try:
            yield
        except self.trips_on as e:
            self._failed(e)
            raise
        except BaseException:
            self._abandoned()
            raise
        self._succeeded()

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def get_status(self) -> dict:
        with self._lock:
            now = time.monotonic()
            state = self._state(now)
            retry_in = 0.0
            if state is CircuitState.OPEN:
                retry_in = self.recovery_timeout - (now - self._opened_at)
            return {
                "name": self.name,
                "state": state.value,
                "consecutive_failures": self._failures,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout_seconds": self.recovery_timeout,
                "retry_in_seconds": round(retry_in, 1),
            }
