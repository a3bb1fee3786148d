"""Resilience patterns for parking_pipeline."""

from parking_pipeline.common.resilience.circuit_breaker import (
    KAFKA_CIRCUIT_CONFIG,
    UPSTREAM_API_CIRCUIT_CONFIG,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    get_all_circuit_diagnostics,
    get_circuit_breaker,
    reset_circuit_breakers,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "KAFKA_CIRCUIT_CONFIG",
    "UPSTREAM_API_CIRCUIT_CONFIG",
    "get_all_circuit_diagnostics",
    "get_circuit_breaker",
    "reset_circuit_breakers",
]
