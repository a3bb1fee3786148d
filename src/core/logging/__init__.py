"""
Structured logging module.

Provides JSON file logging, a human-readable console format and
contextvars-based context propagation (worker, stage, cycle).
"""

from core.logging.context import (
    clear_cycle_id,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import generate_cycle_id, get_logger, setup_logging

__all__ = [
    "ConsoleFormatter",
    "JSONFormatter",
    "clear_cycle_id",
    "clear_log_context",
    "generate_cycle_id",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "setup_logging",
]
