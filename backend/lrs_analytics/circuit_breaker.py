"""
Circuit Breaker
================
Guards calls to one LRS instance. After enough consecutive failures the
instance is left alone for a recovery window, then probed with a limited
number of trial calls.

  CLOSED    ──[consecutive failures >= threshold]──►  OPEN
  OPEN      ──[recovery window elapsed]────────────►  HALF_OPEN
  HALF_OPEN ──[half_open_max_calls successes]──────►  CLOSED
  HALF_OPEN ──[any failure]────────────────────────►  OPEN

Breakers are named "lrs:<instanceId>". Transitions go to the telemetry sink.
"""

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import CircuitOpenError
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)


class CBState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerStats:
    calls: int = 0
    successes: int = 0
    failures: int = 0
    rejections: int = 0  # refused without calling the LRS
    consecutive_failures: int = 0


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker("lrs:hs-ke", failure_threshold=5)
        statements = await cb.call(client.query_statements, filters)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 30.0,
        half_open_max_calls: int = 1,
        telemetry: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self.half_open_max_calls = half_open_max_calls
        self.telemetry = telemetry
        self._clock = clock

        self._state = CBState.CLOSED
        self._opened_at: Optional[float] = None
        self._trials_started = 0
        self._trial_successes = 0
        self.stats = BreakerStats()

    @property
    def state(self) -> CBState:
        if self._state == CBState.OPEN and self.time_until_retry() == 0:
            self._move_to(CBState.HALF_OPEN)
        return self._state

    @property
    def is_available(self) -> bool:
        state = self.state
        if state == CBState.HALF_OPEN:
            return self._trials_started < self.half_open_max_calls
        return state == CBState.CLOSED

    def time_until_retry(self) -> float:
        """Seconds left in the recovery window; 0 unless OPEN."""
        if self._state != CBState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout_s - (self._clock() - self._opened_at))

    async def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run `fn` unless the circuit refuses it. Any exception from `fn` counts
        as a failure and is re-raised.

        Raises:
            CircuitOpenError: OPEN, or HALF_OPEN with every trial slot taken.
        """
        if not self.is_available:
            self.stats.rejections += 1
            raise CircuitOpenError(self.name, self.time_until_retry())
        if self._state == CBState.HALF_OPEN:
            self._trials_started += 1

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self):
        self.stats.calls += 1
        self.stats.successes += 1
        self.stats.consecutive_failures = 0
        if self._state == CBState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.half_open_max_calls:
                self._move_to(CBState.CLOSED)

    def record_failure(self):
        self.stats.calls += 1
        self.stats.failures += 1
        self.stats.consecutive_failures += 1
        if self._state == CBState.HALF_OPEN:
            self._move_to(CBState.OPEN)
        elif self._state == CBState.CLOSED and self.stats.consecutive_failures >= self.failure_threshold:
            self._move_to(CBState.OPEN)

    def reset(self):
        """Admin override: close the circuit and forget the failure streak."""
        self._move_to(CBState.CLOSED)
        self.stats.consecutive_failures = 0
        logger.info(f"🔄 Circuit breaker [{self.name}] manually reset")

    def _move_to(self, new_state: CBState):
        old = self._state
        if old == new_state:
            return
        self._state = new_state
        self._trials_started = 0
        self._trial_successes = 0
        self._opened_at = self._clock() if new_state == CBState.OPEN else None

        logger.info(
            f"🔌 Circuit breaker [{self.name}]: {old.value} → {new_state.value} "
            f"(consecutive failures={self.stats.consecutive_failures})"
        )
        if self.telemetry:
            self.telemetry.record_circuit_transition(self.name, old.value, new_state.value)

    def to_dict(self) -> dict:
        stats = asdict(self.stats)
        stats["success_rate"] = round(self.stats.successes / self.stats.calls, 3) if self.stats.calls else 1.0
        return {
            "name": self.name,
            "state": self.state.value,
            "available": self.is_available,
            "retry_in_s": round(self.time_until_retry(), 1),
            "failure_threshold": self.failure_threshold,
            "recovery_timeout_s": self.recovery_timeout_s,
            "half_open_max_calls": self.half_open_max_calls,
            "stats": stats,
        }


class CircuitBreakerRegistry:
    """One breaker per name, created on first use with shared settings."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 30.0,
        half_open_max_calls: int = 1,
        telemetry: Optional[MetricsCollector] = None,
    ):
        self._settings = {
            "failure_threshold": failure_threshold,
            "recovery_timeout_s": recovery_timeout_s,
            "half_open_max_calls": half_open_max_calls,
            "telemetry": telemetry,
        }
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._breakers[name] = CircuitBreaker(name, **self._settings)
        return breaker

    def all_status(self) -> Dict[str, dict]:
        return {name: breaker.to_dict() for name, breaker in self._breakers.items()}
