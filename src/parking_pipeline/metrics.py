"""
Prometheus metrics for the parking ingestion worker.

Provides instrumentation for:
- Work cycle outcomes and duration
- Peer discovery (peer count, fallbacks)
- Assigned range size
- Upstream requests and record counts
- Message production
- Circuit breaker state
"""

from prometheus_client import Counter, Gauge, Histogram

# Work cycles
cycles_total = Counter(
    "parking_cycles_total",
    "Total number of work cycles by outcome",
    ["status"],  # succeeded, publish_failed, skipped_empty, skipped_busy, failed
)

cycle_failures_total = Counter(
    "parking_cycle_failures_total",
    "Failed work cycles by the state they failed in",
    ["state", "error_category"],
)

cycle_duration_seconds = Histogram(
    "parking_cycle_duration_seconds",
    "Time spent in a complete work cycle",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Peer discovery
peer_count = Gauge(
    "parking_peer_count",
    "Number of same-role peers observed in the last directory query",
)

self_index = Gauge(
    "parking_peer_self_index",
    "This process's position in the ordered peer list",
)

directory_fallbacks_total = Counter(
    "parking_directory_fallbacks_total",
    "Directory queries that fell back to the single-peer assumption",
    ["reason"],  # error, self_missing
)

# Partitioning
assigned_range_size = Gauge(
    "parking_assigned_range_size",
    "Number of indices assigned to this process in the last cycle",
)

upstream_total_count = Gauge(
    "parking_upstream_total_count",
    "Upstream total record count seen in the last cycle",
)

# Upstream
upstream_requests_total = Counter(
    "parking_upstream_requests_total",
    "Upstream API requests by kind and outcome",
    ["kind", "status"],  # kind: count, page; status: success, error
)

upstream_request_duration_seconds = Histogram(
    "parking_upstream_request_duration_seconds",
    "Upstream API request latency",
    ["kind"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

records_fetched_total = Counter(
    "parking_records_fetched_total",
    "Records fetched from the upstream API",
)

records_matched_total = Counter(
    "parking_records_matched_total",
    "Records that passed the filter",
)

# Message production
messages_produced_total = Counter(
    "parking_messages_produced_total",
    "Total number of messages produced to Kafka topics",
    ["topic", "status"],  # status: success, error
)

messages_produced_bytes = Counter(
    "parking_messages_produced_bytes_total",
    "Total bytes of message data produced to Kafka topics",
    ["topic"],
)

producer_errors_total = Counter(
    "parking_producer_errors_total",
    "Total number of producer errors",
    ["topic", "error_type"],
)

kafka_connection_status = Gauge(
    "parking_kafka_connection_status",
    "Kafka connection status (1=connected, 0=disconnected)",
    ["component"],
)

# Circuit breakers
circuit_breaker_state = Gauge(
    "parking_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["component"],
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}


def record_cycle(status: str, duration_seconds: float) -> None:
    """Record a finished cycle."""
    cycles_total.labels(status=status).inc()
    cycle_duration_seconds.observe(duration_seconds)


def record_cycle_failure(state: str, error_category: str) -> None:
    cycle_failures_total.labels(state=state, error_category=error_category).inc()


def record_peer_set(count: int, index: int) -> None:
    peer_count.set(count)
    self_index.set(index)


def record_directory_fallback(reason: str) -> None:
    directory_fallbacks_total.labels(reason=reason).inc()


def record_assignment(total: int, range_size: int) -> None:
    upstream_total_count.set(total)
    assigned_range_size.set(range_size)


def record_upstream_request(kind: str, success: bool, duration_seconds: float) -> None:
    status = "success" if success else "error"
    upstream_requests_total.labels(kind=kind, status=status).inc()
    upstream_request_duration_seconds.labels(kind=kind).observe(duration_seconds)


def record_records(fetched: int, matched: int) -> None:
    records_fetched_total.inc(fetched)
    records_matched_total.inc(matched)


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    status = "success" if success else "error"
    messages_produced_total.labels(topic=topic, status=status).inc()
    if success:
        messages_produced_bytes.labels(topic=topic).inc(message_bytes)


def record_producer_error(topic: str, error_type: str) -> None:
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def update_connection_status(component: str, connected: bool) -> None:
    kafka_connection_status.labels(component=component).set(1 if connected else 0)


def update_circuit_breaker_state(component: str, state: str) -> None:
    circuit_breaker_state.labels(component=component).set(
        _CIRCUIT_STATE_VALUES.get(state, 0)
    )


__all__ = [
    "record_cycle",
    "record_cycle_failure",
    "record_peer_set",
    "record_directory_fallback",
    "record_assignment",
    "record_upstream_request",
    "record_records",
    "record_message_produced",
    "record_producer_error",
    "update_connection_status",
    "update_circuit_breaker_state",
]
