"""Per-agent circuit breaker.

CLOSED lets calls through, OPEN blocks them after too many recent failures,
HALF_OPEN lets calls through again to test whether the agent recovered.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: List[float] = field(default_factory=list)
    consecutive_successes: int = 0
    last_failure: Optional[float] = None
    opened_at: Optional[float] = None
    last_state_change: float = 0.0


@dataclass(frozen=True)
class CircuitStats:
    agent: str
    state: CircuitState
    failure_count: int
    consecutive_successes: int
    last_failure: Optional[float]
    is_allowed: bool


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 30.0,
        failure_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self._clock = clock
        self._circuits: Dict[str, _Circuit] = {}

    def is_allowed(self, agent: str) -> bool:
        circuit = self._circuit(agent)
        self._prune(circuit)
        if circuit.state is CircuitState.OPEN:
            if circuit.opened_at is not None and self._clock() - circuit.opened_at >= self.reset_timeout:
                self._transition(agent, circuit, CircuitState.HALF_OPEN)
                return True
            return False
        return True

    def record_success(self, agent: str) -> None:
        circuit = self._circuit(agent)
        if circuit.state is not CircuitState.HALF_OPEN:
            return
        circuit.consecutive_successes += 1
        if circuit.consecutive_successes >= self.success_threshold:
            self._transition(agent, circuit, CircuitState.CLOSED)
            circuit.failures.clear()
            LOGGER.info("Circuit CLOSED for agent %s after recovery", agent)

    def record_failure(self, agent: str, error: str | None = None) -> None:
        circuit = self._circuit(agent)
        now = self._clock()
        circuit.failures.append(now)
        circuit.last_failure = now
        LOGGER.warning(
            "Agent %s failure recorded (%s, %d in window): %s",
            agent,
            circuit.state.value,
            len(circuit.failures),
            error,
        )
        if circuit.state is CircuitState.CLOSED:
            self._prune(circuit)
            if len(circuit.failures) >= self.failure_threshold:
                self._transition(agent, circuit, CircuitState.OPEN)
                circuit.opened_at = now
        elif circuit.state is CircuitState.HALF_OPEN:
            self._transition(agent, circuit, CircuitState.OPEN)
            circuit.opened_at = now
        else:
            circuit.opened_at = now

    def get_state(self, agent: str) -> CircuitState:
        circuit = self._circuits.get(agent)
        return circuit.state if circuit else CircuitState.CLOSED

    def get_stats(self, agent: str) -> CircuitStats:
        circuit = self._circuit(agent)
        self._prune(circuit)
        return CircuitStats(
            agent=agent,
            state=circuit.state,
            failure_count=len(circuit.failures),
            consecutive_successes=circuit.consecutive_successes,
            last_failure=circuit.last_failure,
            is_allowed=self.is_allowed(agent),
        )

    def reset(self, agent: str) -> None:
        self._circuits.pop(agent, None)

    def reset_all(self) -> None:
        self._circuits.clear()

    def _circuit(self, agent: str) -> _Circuit:
        circuit = self._circuits.get(agent)
        if circuit is None:
            circuit = _Circuit(last_state_change=self._clock())
            self._circuits[agent] = circuit
        return circuit

    def _prune(self, circuit: _Circuit) -> None:
        cutoff = self._clock() - self.failure_window
        circuit.failures = [t for t in circuit.failures if t > cutoff]

    def _transition(self, agent: str, circuit: _Circuit, state: CircuitState) -> None:
        LOGGER.warning("Circuit for agent %s: %s -> %s", agent, circuit.state.value, state.value)
        circuit.state = state
        circuit.last_state_change = self._clock()
        circuit.consecutive_successes = 0
