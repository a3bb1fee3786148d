"""
Log context propagation.

Context values are stored in contextvars so they follow asyncio tasks:
a cycle_id set inside one work cycle does not leak into a concurrently
running task started before it.
"""

from contextvars import ContextVar
from typing import Dict, Optional

_worker_id: ContextVar[Optional[str]] = ContextVar("worker_id", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_domain: ContextVar[Optional[str]] = ContextVar("domain", default=None)
_cycle_id: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)

_VARS = {
    "worker_id": _worker_id,
    "stage": _stage,
    "domain": _domain,
    "cycle_id": _cycle_id,
}


def set_log_context(
    worker_id: Optional[str] = None,
    stage: Optional[str] = None,
    domain: Optional[str] = None,
    cycle_id: Optional[str] = None,
) -> None:
    """
    Set one or more log context values.

    Only arguments that are not None are updated.
    """
    values = {
        "worker_id": worker_id,
        "stage": stage,
        "domain": domain,
        "cycle_id": cycle_id,
    }
    for key, value in values.items():
        if value is not None:
            _VARS[key].set(value)


def get_log_context() -> Dict[str, Optional[str]]:
    """Return the current log context as a dict."""
    return {key: var.get() for key, var in _VARS.items()}


def clear_log_context() -> None:
    """Reset all context values to None."""
    for var in _VARS.values():
        var.set(None)


def clear_cycle_id() -> None:
    """Reset only the cycle identifier (called when a cycle ends)."""
    _cycle_id.set(None)


__all__ = [
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "clear_cycle_id",
]
