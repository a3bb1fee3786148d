"""
Circuit breaker pattern for resilience against cascading failures.

Protects against scenarios like:
- Upstream data API outages (every page of every cycle failing slowly)
- Kafka brokers unreachable

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately (fast-fail)
- HALF_OPEN: Testing recovery, limited requests allowed

Usage:
    breaker = get_circuit_breaker("upstream_api", UPSTREAM_API_CIRCUIT_CONFIG)
    result = await breaker.call_async(lambda: client.fetch_page(1, 1000))
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from parking_pipeline.common.exceptions import (
    CircuitOpenError,
    ErrorCategory,
    PipelineError,
    classify_exception,
)
from parking_pipeline.common.logging import log_exception, log_with_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Number of failures before opening circuit
    failure_threshold: int = 5

    # Number of successes in half-open before closing
    success_threshold: int = 2

    # Seconds to wait in open state before testing
    timeout_seconds: float = 30.0

    # Max concurrent calls allowed in half-open
    half_open_max_calls: int = 3

    # Error categories that count as failures (None = transient/unknown)
    failure_categories: Optional[tuple] = None


# Upstream data API
# - Pages are fetched sequentially, so 5 consecutive failures means the
#   service is down rather than one bad window
# - 60s timeout: shorter than a typical cycle interval
UPSTREAM_API_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    success_threshold=2,
    timeout_seconds=60.0,
    half_open_max_calls=1,
)

# Kafka producer
# - One send per cycle, so open quickly and recover quickly
KAFKA_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=3,
    success_threshold=1,
    timeout_seconds=30.0,
    half_open_max_calls=1,
)


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    current_state: str = "closed"


class CircuitBreaker:
    """
    Circuit breaker implementation with exception-aware failure tracking.

    Thread-safe: diagnostics are read from the health server thread while
    the event loop records calls.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        on_state_change: Optional[Callable[[CircuitState, CircuitState], None]] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0

        self._stats = CircuitStats()
        self._lock = threading.RLock()

    @property
    def circuit_name(self) -> str:
        return self.name

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition on access)."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def stats(self) -> CircuitStats:
        """Get copy of current statistics."""
        with self._lock:
            self._check_state_transition()
            return CircuitStats(
                total_calls=self._stats.total_calls,
                successful_calls=self._stats.successful_calls,
                failed_calls=self._stats.failed_calls,
                rejected_calls=self._stats.rejected_calls,
                state_changes=self._stats.state_changes,
                last_failure_time=self._stats.last_failure_time,
                last_success_time=self._stats.last_success_time,
                current_state=self._state.value,
            )

    def _should_count_failure(self, exc: Exception) -> bool:
        """Determine if exception should count toward failure threshold."""
        if isinstance(exc, PipelineError):
            category = exc.category
        else:
            category = classify_exception(exc)

        if self.config.failure_categories:
            return category in self.config.failure_categories

        # Permanent errors are the request's fault, not the service's
        return category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def _check_state_transition(self) -> None:
        """Check if state should transition (called under lock)."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.time() - self._last_failure_time
            if elapsed >= self.config.timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to new state (called under lock)."""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._stats.state_changes += 1
        self._stats.current_state = new_state.value

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            level = logging.INFO
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0
            level = logging.INFO
        else:
            self._success_count = 0
            level = logging.WARNING

        log_with_context(
            logger,
            level,
            f"Circuit {new_state.value}",
            circuit_name=self.name,
            circuit_state=new_state.value,
            failure_count=self._failure_count,
        )

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Error in circuit state change callback",
                    circuit_name=self.name,
                    level=logging.WARNING,
                    include_traceback=False,
                )

    def _trial_passed(self) -> None:
        """The service answered (called under lock)."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            # Consecutive failure tracking
            self._failure_count = 0

    def _record_success(self) -> None:
        """Record successful call (called under lock)."""
        self._stats.successful_calls += 1
        self._stats.last_success_time = time.time()
        self._trial_passed()

    def _record_failure(self, exc: Exception) -> None:
        """Record failed call (called under lock)."""
        self._stats.failed_calls += 1
        self._stats.last_failure_time = time.time()

        if not self._should_count_failure(exc):
            # A permanent or auth answer still proves the service is up
            if self._state == CircuitState.HALF_OPEN:
                self._trial_passed()
            return

        self._last_failure_time = time.time()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            if self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def _can_execute(self) -> bool:
        """Check if call can proceed (called under lock)."""
        self._check_state_transition()

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            return False

        if self._half_open_calls < self.config.half_open_max_calls:
            self._half_open_calls += 1
            return True

        return False

    def _get_retry_after(self) -> float:
        """Get seconds until circuit might close."""
        if self._last_failure_time is None:
            return 0.0
        elapsed = time.time() - self._last_failure_time
        return max(0.0, self.config.timeout_seconds - elapsed)

    def _admit(self) -> bool:
        """Admit a call or raise; True when it took a half-open trial slot."""
        with self._lock:
            self._stats.total_calls += 1
            if not self._can_execute():
                self._stats.rejected_calls += 1
                raise CircuitOpenError(self.name, self._get_retry_after())
            return self._state == CircuitState.HALF_OPEN

    def _release(self, trial: bool) -> None:
        """Free a half-open slot however the trial ended, cancellation included."""
        if not trial:
            return
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def call(self, func: Callable[[], T]) -> T:
        """
        Execute function through circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Any exception from func (also recorded as failure)
        """
        trial = self._admit()
        try:
            try:
                result = func()
            except Exception as e:
                with self._lock:
                    self._record_failure(e)
                raise
            with self._lock:
                self._record_success()
            return result
        finally:
            self._release(trial)

    async def call_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute a coroutine factory through circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Any exception from func (also recorded as failure)
        """
        trial = self._admit()
        try:
            try:
                result = await func()
            except Exception as e:
                with self._lock:
                    self._record_failure(e)
                raise
            with self._lock:
                self._record_success()
            return result
        finally:
            self._release(trial)

    def reset(self) -> None:
        """Manually reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None

    def get_diagnostics(self) -> Dict[str, Any]:
        """Get diagnostic info for health checks."""
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "stats": {
                    "total_calls": self._stats.total_calls,
                    "successful_calls": self._stats.successful_calls,
                    "failed_calls": self._stats.failed_calls,
                    "rejected_calls": self._stats.rejected_calls,
                    "state_changes": self._stats.state_changes,
                },
            }


# =============================================================================
# Circuit Breaker Registry
# =============================================================================

_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(
    name: str,
    config: Optional[CircuitBreakerConfig] = None,
    on_state_change: Optional[Callable[[CircuitState, CircuitState], None]] = None,
) -> CircuitBreaker:
    """
    Get or create a named circuit breaker.

    Args:
        name: Unique name for the circuit breaker
        config: Configuration (only used on first creation)
        on_state_change: Callback (only used on first creation)

    Returns:
        CircuitBreaker instance
    """
    with _registry_lock:
        if name not in _breakers:
            _breakers[name] = CircuitBreaker(name, config, on_state_change)
        return _breakers[name]


def get_all_circuit_diagnostics() -> Dict[str, Dict[str, Any]]:
    """Diagnostics for every registered breaker (health /status)."""
    with _registry_lock:
        breakers = list(_breakers.values())
    return {b.name: b.get_diagnostics() for b in breakers}


def reset_circuit_breakers() -> None:
    """Drop all registered breakers (for testing)."""
    with _registry_lock:
        _breakers.clear()
