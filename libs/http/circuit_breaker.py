"""Sliding-window circuit breaker shared by all clients of one upstream.

States:
- CLOSED: requests flow, outcomes are counted in a window of fixed length
- OPEN: every call is rejected until the open duration elapses
- HALF_OPEN: a limited number of probe calls are admitted

Transitions:
- CLOSED -> OPEN: at least ``min_calls`` requests in the current window and
  the failure ratio reached ``fail_rate_percent``
- OPEN -> HALF_OPEN: after ``open_duration`` seconds
- HALF_OPEN -> CLOSED: after ``half_open_calls`` consecutive successes
- HALF_OPEN -> OPEN: on any failure
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from libs.core.exceptions import BreakerOpenError
from libs.metrics import record_breaker_state

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        window: float = 10.0,
        min_calls: int = 5,
        fail_rate_percent: float = 50.0,
        half_open_calls: int = 1,
        open_duration: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.window = window
        self.min_calls = min_calls
        self.fail_rate_percent = fail_rate_percent
        self.half_open_calls = max(1, half_open_calls)
        self.open_duration = open_duration
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        # Outcomes from a previous generation are ignored
        self._generation = 0
        self._requests = 0
        self._failures = 0
        self._consecutive_successes = 0
        self._expiry = self._clock() + self.window

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state(self._clock())

    def before_call(self) -> int:
        """Admit a call or raise :class:`BreakerOpenError`; returns the generation."""
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            if state == CircuitState.OPEN:
                raise BreakerOpenError(f"circuit breaker {self.name} is open", self.name)
            if state == CircuitState.HALF_OPEN and self._requests >= self.half_open_calls:
                raise BreakerOpenError(
                    f"circuit breaker {self.name} is half-open and busy", self.name
                )
            self._requests += 1
            return self._generation

    def after_call(self, generation: int, success: bool) -> None:
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            if generation != self._generation:
                return
            if success:
                self._on_success(state, now)
            else:
                self._on_failure(state, now)

    def get_state(self) -> Dict[str, object]:
        with self._lock:
            state = self._current_state(self._clock())
            return {
                "name": self.name,
                "state": state.value,
                "requests": self._requests,
                "failures": self._failures,
            }

    # ------------------------------------------------------------------

    def _current_state(self, now: float) -> CircuitState:
        if self._state == CircuitState.CLOSED and now >= self._expiry:
            self._new_generation(now)
        elif self._state == CircuitState.OPEN and now >= self._expiry:
            self._set_state(CircuitState.HALF_OPEN, now)
        return self._state

    def _on_success(self, state: CircuitState, now: float) -> None:
        if state == CircuitState.HALF_OPEN:
            self._consecutive_successes += 1
            if self._consecutive_successes >= self.half_open_calls:
                self._set_state(CircuitState.CLOSED, now)

    def _on_failure(self, state: CircuitState, now: float) -> None:
        if state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN, now)
            return
        if state == CircuitState.CLOSED:
            self._failures += 1
            if self._ready_to_trip():
                self._set_state(CircuitState.OPEN, now)

    def _ready_to_trip(self) -> bool:
        if self._requests < self.min_calls:
            return False
        return self._failures / self._requests * 100 >= self.fail_rate_percent

    def _set_state(self, state: CircuitState, now: float) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        self._new_generation(now)
        record_breaker_state(self.name, state.value)
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            "Circuit breaker %s: %s -> %s",
            self.name,
            previous.value,
            state.value,
            extra={"breaker": self.name},
        )

    def _new_generation(self, now: float) -> None:
        self._generation += 1
        self._requests = 0
        self._failures = 0
        self._consecutive_successes = 0
        if self._state == CircuitState.CLOSED:
            self._expiry = now + self.window
        elif self._state == CircuitState.OPEN:
            self._expiry = now + self.open_duration
        else:
            self._expiry = float("inf")


_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(service_name: str, **config) -> CircuitBreaker:
    """Return the process-wide breaker for ``service_name``, creating it once."""
    with _registry_lock:
        breaker = _breakers.get(service_name)
        if breaker is None:
            breaker = CircuitBreaker(f"{service_name}_circuit_breaker", **config)
            _breakers[service_name] = breaker
        return breaker


def reset_circuit_breakers(service_name: Optional[str] = None) -> None:
    with _registry_lock:
        if service_name is None:
            _breakers.clear()
        else:
            _breakers.pop(service_name, None)


__all__ = [
    "CircuitState",
    "CircuitBreaker",
    "get_circuit_breaker",
    "reset_circuit_breakers",
]
