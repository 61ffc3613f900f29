"""Resilient outbound HTTP."""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    get_circuit_breaker,
    reset_circuit_breakers,
)
from .resilient_client import ResilientHttpClient

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "get_circuit_breaker",
    "reset_circuit_breakers",
    "ResilientHttpClient",
]
