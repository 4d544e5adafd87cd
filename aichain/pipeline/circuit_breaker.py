"""Process-wide circuit breaker state, keyed by provider id.

States:
    - CLOSED: Calls pass through; consecutive failures are counted
    - OPEN: Threshold reached; calls are rejected until the cooldown elapses

Transitions:
    CLOSED -> OPEN: consecutive failures reach the pipeline's threshold
    OPEN -> CLOSED: cooldown elapsed (counter reset) on the next check

One table is shared by every run in the process so that concurrent runs
targeting the same provider see the same counters. All reads and writes go
through a single threading.Lock; critical sections never await.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass
class ProviderCircuit:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_until: Optional[float] = None
    total_failures: int = 0
    total_successes: int = 0
    total_rejections: int = 0


class CircuitBreakerTable:
    """Per-provider consecutive-failure counters with open/cooldown gating."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: Dict[str, ProviderCircuit] = {}

    def _circuit(self, provider_id: str) -> ProviderCircuit:
        circuit = self._circuits.get(provider_id)
        if circuit is None:
            circuit = self._circuits[provider_id] = ProviderCircuit()
        return circuit

    def _refresh(self, provider_id: str, circuit: ProviderCircuit) -> None:
        # Caller holds the lock
        if circuit.state == CircuitState.OPEN and self._clock() >= circuit.opened_until:
            circuit.state = CircuitState.CLOSED
            circuit.consecutive_failures = 0
            circuit.opened_until = None
            logger.info(f"Circuit for {provider_id} closed after cooldown")

    def before_call(self, provider_id: str) -> None:
        """
        Gate a call to `provider_id`.

        Raises:
            CircuitOpenError: The provider is open and its cooldown has not elapsed
        """
        with self._lock:
            circuit = self._circuit(provider_id)
            self._refresh(provider_id, circuit)
            if circuit.state == CircuitState.OPEN:
                circuit.total_rejections += 1
                retry_after = max(0.0, circuit.opened_until - self._clock())
                logger.warning(
                    f"Circuit open for {provider_id}; rejecting call "
                    f"(rejections={circuit.total_rejections})"
                )
                raise CircuitOpenError(provider_id, retry_after)

    def record_success(self, provider_id: str) -> None:
        with self._lock:
            circuit = self._circuit(provider_id)
            circuit.total_successes += 1
            circuit.consecutive_failures = 0

    def record_failure(self, provider_id: str, failure_threshold: int, cooldown: float) -> bool:
        """
        Count a failed call.

        Returns:
            True if this failure opened the circuit
        """
        with self._lock:
            circuit = self._circuit(provider_id)
            self._refresh(provider_id, circuit)
            circuit.total_failures += 1
            circuit.consecutive_failures += 1
            if (
                circuit.state == CircuitState.CLOSED
                and circuit.consecutive_failures >= failure_threshold
            ):
                circuit.state = CircuitState.OPEN
                circuit.opened_until = self._clock() + cooldown
                logger.warning(
                    f"Circuit opened for {provider_id} after "
                    f"{circuit.consecutive_failures} consecutive failures (cooldown {cooldown}s)"
                )
                return True
            return False

    def state(self, provider_id: str) -> CircuitState:
        with self._lock:
            circuit = self._circuit(provider_id)
            self._refresh(provider_id, circuit)
            return circuit.state

    def get_metrics(self, provider_id: str) -> Dict[str, object]:
        with self._lock:
            circuit = self._circuit(provider_id)
            self._refresh(provider_id, circuit)
            return {
                "state": circuit.state.value,
                "consecutive_failures": circuit.consecutive_failures,
                "total_failures": circuit.total_failures,
                "total_successes": circuit.total_successes,
                "total_rejections": circuit.total_rejections,
            }

    def reset(self, provider_id: Optional[str] = None) -> None:
        with self._lock:
            if provider_id is None:
                self._circuits.clear()
            else:
                self._circuits.pop(provider_id, None)


_circuit_table = CircuitBreakerTable()


def get_circuit_table() -> CircuitBreakerTable:
    """The process-wide table shared by all runs."""
    return _circuit_table
