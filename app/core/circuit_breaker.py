"""
Per-dependency circuit breakers.

One breaker per dependency label, shared by every caller in the process via a
CircuitBreakerRegistry built once at startup (see app.main) and passed to the
code that issues guarded requests.

States:
    CLOSED    -> calls pass; failures accumulate, threshold reached -> OPEN
    OPEN      -> calls rejected with CircuitOpenError until recovery_timeout
                 has elapsed since the last failure, then -> HALF_OPEN
    HALF_OPEN -> trial calls pass; success -> CLOSED (failures reset),
                 failure -> OPEN

Successes while CLOSED do not clear the accumulated failure count; only a
successful half-open trial does. HALF_OPEN admits every concurrent caller as
a trial.
"""

from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from app.core.errors import CircuitOpenError, capture_message
from app.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

StateChangeCallback = Callable[[str, str, str], Any]  # (name, old_state, new_state)


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    on_state_change: Optional[StateChangeCallback] = None

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        """Return current state. Use allow_request() for state transitions."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> datetime | None:
        return self._last_failure_time

    def _transition(self, new_state: CircuitState) -> None:
        """Must be called while holding self._lock."""
        old_state = self._state
        self._state = new_state
        if self.on_state_change and old_state != new_state:
            try:
                self.on_state_change(self.name, old_state.value, new_state.value)
            except Exception as e:
                logger.error("Circuit breaker notification failed", circuit=self.name, error=str(e))

    def _seconds_since_failure(self) -> float | None:
        if self._last_failure_time is None:
            return None
        return (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()

    def allow_request(self) -> bool:
        """Decide whether a call may proceed, moving OPEN -> HALF_OPEN once the cooldown is over."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._seconds_since_failure()
                if elapsed is not None and elapsed > self.recovery_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                    logger.info("Circuit breaker half-open, allowing test request", circuit=self.name)
                    return True
                return False
            return True

    def retry_after(self) -> float | None:
        """Seconds until an open circuit admits a trial call."""
        elapsed = self._seconds_since_failure()
        if self._state != CircuitState.OPEN or elapsed is None:
            return None
        return max(0.0, self.recovery_timeout - elapsed)

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._failure_count = 0
                self._transition(CircuitState.CLOSED)
                logger.info("Circuit breaker closed, service recovered", circuit=self.name)

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                logger.warning("Circuit breaker reopened (failure during recovery)", circuit=self.name)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN)
                logger.error("Circuit breaker opened", circuit=self.name, failures=self._failure_count)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` under this breaker.

        Raises CircuitOpenError without invoking the operation while open.
        Any exception from the operation is recorded as a failure and
        re-raised unchanged.
        """
        if not self.allow_request():
            logger.warning("Circuit breaker open, rejecting request", circuit=self.name)
            raise CircuitOpenError(self.name, retry_after=self.retry_after())

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "last_failure_at": self._last_failure_time.isoformat() if self._last_failure_time else None,
        }


# label -> (failure_threshold, recovery_timeout seconds)
DEFAULT_BREAKERS: Dict[str, tuple[int, float]] = {
    "repliers-api": (5, 60.0),
    "slack-api": (5, 30.0),
    "openai-api": (3, 120.0),
}


class CircuitBreakerRegistry:
    """
    Holds one CircuitBreaker per dependency label.

    Built once at the composition root and passed by reference; breakers are
    created on first use and live as long as the registry.
    """

    def __init__(
        self,
        defaults: Optional[Dict[str, tuple[int, float]]] = None,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        self._defaults = dict(DEFAULT_BREAKERS if defaults is None else defaults)
        self._on_state_change = on_state_change
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def get(self, name: str, **kwargs) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                threshold, recovery = self._defaults.get(name, (5, 60.0))
                kwargs.setdefault("failure_threshold", threshold)
                kwargs.setdefault("recovery_timeout", recovery)
                kwargs.setdefault("on_state_change", self._on_state_change)
                self._breakers[name] = CircuitBreaker(name=name, **kwargs)
            return self._breakers[name]

    def get_all_states(self) -> Dict[str, str]:
        return {name: cb.state.value for name, cb in self._breakers.items()}

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: cb.snapshot() for name, cb in self._breakers.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._breakers


def report_state_change(name: str, old_state: str, new_state: str) -> None:
    """Default state-change callback: forward to error reporting."""
    level = "warning" if new_state == CircuitState.OPEN.value else "info"
    capture_message(
        f"Circuit {name}: {old_state} -> {new_state}",
        level=level,
        context={"circuit": name, "old_state": old_state, "new_state": new_state},
        tags={"circuit": name},
    )


def build_default_registry() -> CircuitBreakerRegistry:
    """Registry with the known dependencies pre-created."""
    registry = CircuitBreakerRegistry(on_state_change=report_state_change)
    for name in DEFAULT_BREAKERS:
        registry.get(name)
    return registry
