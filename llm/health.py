"""
Per-provider health tracking and circuit breaking.

Closed circuits accept calls. After `failure_threshold` consecutive failures
the circuit opens and the provider is skipped until `cooldown_seconds` have
elapsed; it then reports half-open and admits a single trial call. A successful
trial call closes the circuit, a failed one re-opens it.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from monitoring.metrics import CIRCUIT_OPENED

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class ProviderHealth:
    """Mutable health counters for one provider."""
    provider: str
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    circuit: CircuitState = CircuitState.CLOSED
    opened_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    last_error: Optional[str] = None
    trial_in_flight: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "provider": self.provider,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "circuit": self.circuit.value,
            "last_failure_at": self.last_failure_at,
            "last_error": self.last_error,
            "trial_in_flight": self.trial_in_flight,
        }


class HealthTracker:
    """Thread-safe registry of ProviderHealth records."""

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._health: Dict[str, ProviderHealth] = {}
        self._lock = threading.Lock()

    def _get(self, provider: str) -> ProviderHealth:
        # Caller holds the lock
        health = self._health.get(provider)
        if health is None:
            health = ProviderHealth(provider=provider)
            self._health[provider] = health
        return health

    def _refresh(self, provider: str) -> ProviderHealth:
        # Caller holds the lock
        health = self._get(provider)
        if (
            health.circuit == CircuitState.OPEN
            and health.opened_at is not None
            and self._clock() - health.opened_at >= self.cooldown_seconds
        ):
            health.circuit = CircuitState.HALF_OPEN
            health.trial_in_flight = False
            logger.info(f"Circuit half-open for provider {provider}")
        return health

    def state(self, provider: str) -> CircuitState:
        """Current circuit state, promoting OPEN to HALF_OPEN once cooled down."""
        with self._lock:
            return self._refresh(provider).circuit

    def is_available(self, provider: str) -> bool:
        """
        Whether a call may be sent to the provider now.

        A half-open circuit admits one caller, whose call is the trial;
        everyone else is turned away until that call's outcome is recorded.
        """
        with self._lock:
            health = self._refresh(provider)
            if health.circuit == CircuitState.CLOSED:
                return True
            if health.circuit == CircuitState.HALF_OPEN and not health.trial_in_flight:
                health.trial_in_flight = True
                return True
            return False

    def release_trial(self, provider: str):
        """Give back a claimed trial slot without recording an outcome (e.g. the call was cancelled)."""
        with self._lock:
            self._get(provider).trial_in_flight = False

    def record_success(self, provider: str):
        with self._lock:
            health = self._get(provider)
            if health.circuit != CircuitState.CLOSED:
                logger.info(f"Circuit closed for provider {provider}")
            health.consecutive_failures = 0
            health.total_successes += 1
            health.circuit = CircuitState.CLOSED
            health.opened_at = None
            health.trial_in_flight = False

    def record_failure(self, provider: str, error: str):
        with self._lock:
            health = self._get(provider)
            now = self._clock()
            health.consecutive_failures += 1
            health.total_failures += 1
            health.last_failure_at = now
            health.last_error = error

            trial_failed = health.circuit == CircuitState.HALF_OPEN
            health.trial_in_flight = False
            if health.circuit != CircuitState.OPEN and (
                trial_failed or health.consecutive_failures >= self.failure_threshold
            ):
                health.circuit = CircuitState.OPEN
                health.opened_at = now
                CIRCUIT_OPENED.labels(provider=provider).inc()
                logger.warning(
                    f"Circuit opened for provider {provider} after "
                    f"{health.consecutive_failures} consecutive failures"
                )

    def snapshot(self, provider: str) -> ProviderHealth:
        """Copy of a provider's counters."""
        with self._lock:
            health = self._get(provider)
            return ProviderHealth(**health.__dict__)

    def reset(self, provider: Optional[str] = None):
        """Forget health for one provider, or for all of them."""
        with self._lock:
            if provider is None:
                self._health.clear()
            else:
                self._health.pop(provider, None)
        logger.info(f"Provider health reset: {provider or 'all'}")
