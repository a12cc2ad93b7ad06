"""
Per-service circuit breaker.

State machine per service id (created lazily on first use):

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(timeout_duration elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(success_threshold trial successes)--> CLOSED
    HALF_OPEN --(any trial failure)--> OPEN

The OPEN -> HALF_OPEN transition is checked lazily when a call arrives;
there is no background timer. Each service has its own lock, held only
while reading or changing state and never while the operation runs, so
unrelated services never contend and transitions stay linearizable.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from execution_gateway.errors.exceptions import CircuitOpenError, DeadlineExceeded
from execution_gateway.models.enums import CircuitState
from execution_gateway.models.policy_models import CircuitBreakerConfig
from execution_gateway.monitoring.metrics import (
    circuit_rejections_total,
    circuit_state,
    circuit_transitions_total,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass(frozen=True)
class CircuitStatus:
    """Read-only snapshot of one service's circuit."""

    service_id: str
    state: CircuitState
    consecutive_failures: int
    half_open_successes: int
    last_failure_at: Optional[float]


@dataclass
class _ServiceCircuit:
    service_id: str
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    half_open_successes: int = 0
    half_open_in_flight: int = 0
    last_failure_at: Optional[float] = None
    # Bumped on reset so calls admitted before a reset cannot touch the new state
    generation: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CircuitBreaker:
    """
    Circuit breaker keyed by logical service id (e.g. ``"openai:gpt-4-turbo"``).

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        timeout_duration: Seconds the circuit stays open before a trial
        success_threshold: Consecutive trial successes that close it again
        half_open_max_calls: Trial calls allowed in flight while half-open
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout_duration: float = 60.0,
        success_threshold: int = 2,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.configure(
            CircuitBreakerConfig(
                failure_threshold=failure_threshold,
                timeout_duration=timeout_duration,
                success_threshold=success_threshold,
                half_open_max_calls=half_open_max_calls,
            )
        )
        self._clock = clock
        self._circuits: Dict[str, _ServiceCircuit] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: CircuitBreakerConfig, clock: Callable[[], float] = time.monotonic
    ) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.failure_threshold,
            timeout_duration=config.timeout_duration,
            success_threshold=config.success_threshold,
            half_open_max_calls=config.half_open_max_calls,
            clock=clock,
        )

    def configure(self, config: CircuitBreakerConfig) -> None:
        """Apply new thresholds; existing circuit states are kept."""
        self.failure_threshold = config.failure_threshold
        self.timeout_duration = config.timeout_duration
        self.success_threshold = config.success_threshold
        self.half_open_max_calls = config.half_open_max_calls

    async def execute(self, service_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation through the service's circuit.

        Args:
            service_id: Logical service key
            operation: Zero-argument coroutine function

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: Circuit is open (operation not invoked)
            Exception: Whatever the operation raised (recorded as a failure)
        """
        circuit = self._circuit(service_id)
        with circuit.lock:
            trial, generation = self._admit(circuit)

        try:
            result = await operation()
        except DeadlineExceeded as exc:
            # Caller gave up; only a provider failure seen before that counts
            with circuit.lock:
                if circuit.generation == generation:
                    if exc.last_error is None:
                        self._free_trial(circuit, trial)
                    else:
                        self._on_failure(circuit, trial)
            raise
        except Exception:
            with circuit.lock:
                if circuit.generation == generation:
                    self._on_failure(circuit, trial)
            raise
        except BaseException:
            # Cancelled: neither success nor failure
            with circuit.lock:
                if circuit.generation == generation:
                    self._free_trial(circuit, trial)
            raise

        with circuit.lock:
            if circuit.generation == generation:
                self._on_success(circuit, trial)
        return result

    def reset(self, service_id: Optional[str] = None) -> None:
        """
        Force circuits back to CLOSED with cleared counters.

        Args:
            service_id: Service to reset; all known services when None
        """
        with self._registry_lock:
            if service_id is None:
                targets = list(self._circuits.values())
            else:
                known = self._circuits.get(service_id)
                targets = [known] if known is not None else []

        for circuit in targets:
            with circuit.lock:
                previous = circuit.state
                circuit.state = CircuitState.CLOSED
                circuit.consecutive_failures = 0
                circuit.half_open_successes = 0
                circuit.half_open_in_flight = 0
                circuit.last_failure_at = None
                circuit.generation += 1
                circuit_state.labels(service_id=circuit.service_id).set(0)
            logger.info(
                "Circuit breaker reset",
                service_id=circuit.service_id,
                previous_state=previous.value,
            )

    def get_status(self, service_id: str) -> CircuitStatus:
        """Snapshot of a service's circuit (CLOSED defaults for unknown ids)."""
        with self._registry_lock:
            circuit = self._circuits.get(service_id)
        if circuit is None:
            return CircuitStatus(service_id, CircuitState.CLOSED, 0, 0, None)
        with circuit.lock:
            return self._status(circuit)

    def snapshot(self) -> list[CircuitStatus]:
        """Snapshot of every known service's circuit."""
        with self._registry_lock:
            circuits = list(self._circuits.values())
        statuses = []
        for circuit in circuits:
            with circuit.lock:
                statuses.append(self._status(circuit))
        return statuses

    def _circuit(self, service_id: str) -> _ServiceCircuit:
        circuit = self._circuits.get(service_id)
        if circuit is None:
            with self._registry_lock:
                circuit = self._circuits.setdefault(service_id, _ServiceCircuit(service_id))
        return circuit

    def _admit(self, circuit: _ServiceCircuit) -> tuple[bool, int]:
        """Decide whether a call may proceed; returns (is_trial, generation)."""
        if circuit.state == CircuitState.OPEN:
            elapsed = self._clock() - (circuit.last_failure_at or 0.0)
            if elapsed < self.timeout_duration:
                circuit_rejections_total.labels(service_id=circuit.service_id).inc()
                raise CircuitOpenError(circuit.service_id, self.timeout_duration - elapsed)
            self._transition(circuit, CircuitState.HALF_OPEN)
            circuit.half_open_successes = 0
            circuit.half_open_in_flight = 0

        if circuit.state == CircuitState.HALF_OPEN:
            if circuit.half_open_in_flight >= self.half_open_max_calls:
                circuit_rejections_total.labels(service_id=circuit.service_id).inc()
                raise CircuitOpenError(circuit.service_id, 0.0)
            circuit.half_open_in_flight += 1
            return True, circuit.generation

        return False, circuit.generation

    @staticmethod
    def _free_trial(circuit: _ServiceCircuit, trial: bool) -> None:
        if trial:
            circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)

    def _on_success(self, circuit: _ServiceCircuit, trial: bool) -> None:
        if circuit.state == CircuitState.HALF_OPEN and trial:
            circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)
            circuit.half_open_successes += 1
            if circuit.half_open_successes >= self.success_threshold:
                self._transition(circuit, CircuitState.CLOSED)
                circuit.consecutive_failures = 0
                circuit.half_open_successes = 0
                circuit.last_failure_at = None
        elif circuit.state == CircuitState.CLOSED:
            circuit.consecutive_failures = 0

    def _on_failure(self, circuit: _ServiceCircuit, trial: bool) -> None:
        now = self._clock()
        circuit.consecutive_failures += 1

        if circuit.state == CircuitState.HALF_OPEN and trial:
            circuit.half_open_in_flight = max(0, circuit.half_open_in_flight - 1)
            circuit.half_open_successes = 0
            circuit.last_failure_at = now
            self._transition(circuit, CircuitState.OPEN)
        elif circuit.state == CircuitState.CLOSED:
            circuit.last_failure_at = now
            if circuit.consecutive_failures >= self.failure_threshold:
                self._transition(circuit, CircuitState.OPEN)

    def _transition(self, circuit: _ServiceCircuit, to_state: CircuitState) -> None:
        previous = circuit.state
        circuit.state = to_state
        circuit_transitions_total.labels(service_id=circuit.service_id, to_state=to_state.value).inc()
        circuit_state.labels(service_id=circuit.service_id).set(_STATE_GAUGE_VALUES[to_state])

        if to_state == CircuitState.OPEN:
            logger.warning(
                "circuit_opened",
                service_id=circuit.service_id,
                previous_state=previous.value,
                consecutive_failures=circuit.consecutive_failures,
                timeout_seconds=self.timeout_duration,
            )
        else:
            logger.info(
                "Circuit breaker state change",
                service_id=circuit.service_id,
                from_state=previous.value,
                to_state=to_state.value,
            )

    @staticmethod
    def _status(circuit: _ServiceCircuit) -> CircuitStatus:
        return CircuitStatus(
            service_id=circuit.service_id,
            state=circuit.state,
            consecutive_failures=circuit.consecutive_failures,
            half_open_successes=circuit.half_open_successes,
            last_failure_at=circuit.last_failure_at,
        )
