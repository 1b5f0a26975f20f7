import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

from .exceptions import CircuitOpenError

T = TypeVar("T")

# Circuit states
CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    failure_window_ms: int = 60000
    open_duration_ms: int = 30000
    half_open_max_attempts: int = 1


DEFAULT_CIRCUIT_BREAKER_CONFIG = CircuitBreakerConfig()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class CircuitBreakerState:
    state: str
    failure_timestamps: List[float]
    last_state_change: float
    half_open_attempts: int = 0


class CircuitBreaker(Generic[T]):
    """
    Three-state gate around one remote capability.

    closed    -> open       once `failure_threshold` failures fall inside `failure_window_ms`
    open      -> half_open  on the first call after `open_duration_ms` (checked lazily)
    half_open -> closed     on a successful probe
    half_open -> open       on a failed probe, or when the probe budget is already spent

    While open, calls never reach the operation: the fallback is returned if one
    was given, otherwise CircuitOpenError is raised.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        fallback: Optional[Callable[[], T]] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.name = name
        self.config = config or DEFAULT_CIRCUIT_BREAKER_CONFIG
        self.fallback = fallback
        self._clock = clock
        self._lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self._state = CircuitBreakerState(CLOSED, [], clock())

    def execute(self, operation: Callable[[], T]) -> T:
        with self._lock:
            self._prune_failures()
            allowed = self._admit()
        if not allowed:
            return self._handle_open_circuit()

        try:
            result = operation()
        except Exception:
            with self._lock:
                self._on_failure()
            raise
        with self._lock:
            self._on_success()
        return result

    # ---------- state machine ----------
    def _admit(self) -> bool:
        st = self._state
        if st.state == OPEN:
            if self._clock() - st.last_state_change >= self.config.open_duration_ms:
                self._transition_to(HALF_OPEN)
            else:
                self.logger.warning("Circuit is OPEN, rejecting request")
                return False

        if st.state == HALF_OPEN:
            if st.half_open_attempts >= self.config.half_open_max_attempts:
                self.logger.warning("Half-open attempts exhausted, circuit back to OPEN")
                self._transition_to(OPEN)
                return False
            st.half_open_attempts += 1
        return True

    def _on_success(self) -> None:
        if self._state.state == HALF_OPEN:
            self.logger.info("Probe succeeded in HALF_OPEN state, closing circuit")
            self._transition_to(CLOSED)

    def _on_failure(self) -> None:
        st = self._state
        st.failure_timestamps.append(self._clock())

        if st.state == HALF_OPEN:
            self.logger.warning("Probe failed in HALF_OPEN state, opening circuit")
            self._transition_to(OPEN)
            return

        if st.state == CLOSED and len(st.failure_timestamps) >= self.config.failure_threshold:
            self.logger.warning(
                "Failure threshold (%d) reached, opening circuit",
                self.config.failure_threshold,
            )
            self._transition_to(OPEN)

    def _transition_to(self, new_state: str) -> None:
        st = self._state
        self.logger.info("Circuit transitioning from %s to %s", st.state, new_state)
        st.state = new_state
        st.last_state_change = self._clock()
        if new_state == CLOSED:
            st.failure_timestamps = []
            st.half_open_attempts = 0
        elif new_state == HALF_OPEN:
            st.half_open_attempts = 0

    def _prune_failures(self) -> None:
        cutoff = self._clock() - self.config.failure_window_ms
        self._state.failure_timestamps = [
            ts for ts in self._state.failure_timestamps if ts > cutoff
        ]

    def _handle_open_circuit(self) -> T:
        if self.fallback is not None:
            self.logger.info("Using fallback")
            return self.fallback()
        raise CircuitOpenError(self.name)

    # ---------- introspection ----------
    @property
    def state(self) -> str:
        return self._state.state

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune_failures()
            return len(self._state.failure_timestamps)

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState(CLOSED, [], self._clock())
