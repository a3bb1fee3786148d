"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "producer_id",
        "cycle_id",
        "cycle_status",
        "failed_state",
        "duration_ms",
        "duration_seconds",
        "http_status",
        "error_category",
        "error_message",
        # Peer directory
        "role_label",
        "namespace",
        "peer_count",
        "self_index",
        "peers",
        "degraded",
        # Partitioning
        "total",
        "range_start",
        "range_end",
        "range_size",
        # Upstream
        "api_endpoint",
        "page_start",
        "page_end",
        "page_count",
        "result_code",
        "attempt",
        "operation",
        "retry_delay_seconds",
        "records_fetched",
        "records_matched",
        # Kafka
        "topic",
        "key",
        "partition",
        "offset",
        "value_size",
        "bootstrap_servers",
        "security_protocol",
        "acks",
        # Resilience
        "circuit_name",
        "circuit_state",
        "failure_count",
    ]

    # Upstream URLs embed the API key as a path segment
    REDACTED_FIELDS = ["api_key", "token"]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        ctx = get_log_context()
        for key in ("domain", "stage", "worker_id", "cycle_id"):
            if ctx[key]:
                log_entry[key] = ctx[key]

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        for field in self.REDACTED_FIELDS:
            if getattr(record, field, None) is not None:
                log_entry[field] = "***"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes context when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["worker_id"]:
            parts.append(f"[{ctx['worker_id']}]")
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)

        cycle_id = getattr(record, "cycle_id", None) or ctx["cycle_id"]
        if cycle_id:
            line = f"{prefix} - [{cycle_id}] {record.getMessage()}"
        else:
            line = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
