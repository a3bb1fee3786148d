"""
Entry point for the parking ingestion worker.

Usage:
    # Run with settings from the environment (interval 0 = one cycle)
    python -m parking_pipeline

    # Run a cycle every 5 minutes
    python -m parking_pipeline --interval 300

    # Load a YAML config file (environment variables still override)
    python -m parking_pipeline --config config/parking.yaml

    # Show how 2115 records split across 3 replicas, then exit
    python -m parking_pipeline --plan 2115 3

Each replica discovers its peers, takes its own slice of the upstream
index range, filters it and publishes the result to Kafka.
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from core.logging.setup import get_logger, setup_logging
from parking_pipeline.common.exceptions import ConfigurationError
from parking_pipeline.config import PipelineConfig
from parking_pipeline.directory import PeerDirectory
from parking_pipeline.filters import RecordFilter
from parking_pipeline.health import HealthServer, get_health_state
from parking_pipeline.partitioning import partition_all
from parking_pipeline.producer import BaseKafkaProducer
from parking_pipeline.publisher import Publisher
from parking_pipeline.upstream import PagedFetcher, UpstreamClient
from parking_pipeline.worker import WorkCycleOrchestrator

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

# Global shutdown event for graceful cycle completion
# Set by signal handlers, checked by the work loop between cycles
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    """Get or create the global shutdown event."""
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the self-partitioning parking ingestion worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One cycle, settings from the environment
    python -m parking_pipeline --once

    # Continuous mode with a 5 minute interval
    python -m parking_pipeline --interval 300

    # Partition table for 101 records across 3 peers
    python -m parking_pipeline --plan 101 3
        """,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single work cycle and exit",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (default: CYCLE_INTERVAL_SECONDS, 0 = once)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: PARKING_PIPELINE_CONFIG env var)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: METRICS_PORT or 8000, 0 disables)",
    )

    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Port for the health endpoint (default: HEALTH_PORT or 3000, 0 disables)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--plan",
        nargs=2,
        type=int,
        metavar=("TOTAL", "PEERS"),
        help="Print the partition of TOTAL records across PEERS and exit",
    )

    return parser.parse_args(argv)


def print_plan(total: int, peers: int) -> None:
    """Print every peer's window for an operator sanity check."""
    ranges = partition_all(total, peers)
    print(f"{total:,} records across {peers} peer(s)")
    print(f"  {'peer':>4}  {'start':>8}  {'end':>8}  {'size':>8}")
    for index, work_range in enumerate(ranges):
        if work_range.is_empty:
            print(f"  {index:>4}  {'-':>8}  {'-':>8}  {0:>8}")
        else:
            print(
                f"  {index:>4}  {work_range.start:>8}  {work_range.end:>8}"
                f"  {len(work_range):>8}"
            )


async def run_worker(config: PipelineConfig, once: Optional[bool] = None) -> int:
    """
    Start the producer and run work cycles until shutdown.

    Returns:
        Process exit code: 1 if the producer cannot connect, or if a
        single-cycle run fails; 0 otherwise
    """
    health = get_health_state()
    producer_id = config.worker.pod_name
    health.set_producer_id(producer_id)

    producer = BaseKafkaProducer(config.kafka)
    try:
        await producer.start()
    except Exception as e:
        logger.error(
            "Failed to connect Kafka producer",
            extra={
                "bootstrap_servers": config.kafka.bootstrap_servers,
                "error_message": str(e)[:500],
            },
            exc_info=True,
        )
        health.set_component_status("kafka_producer", "disconnected")
        return 1

    health.set_component_status("kafka_producer", "connected")
    health.set_ready()

    shutdown_event = get_shutdown_event()
    try:
        async with PeerDirectory(config.directory, producer_id) as directory, \
                UpstreamClient(config.upstream) as client:
            orchestrator = WorkCycleOrchestrator(
                directory=directory,
                client=client,
                fetcher=PagedFetcher.from_config(client, config.upstream),
                record_filter=RecordFilter.from_config(config.worker),
                publisher=Publisher(producer, producer_id),
                topic=config.kafka.topic,
                producer_id=producer_id,
                role_label=config.directory.role_label,
                cycle_interval_seconds=config.worker.cycle_interval_seconds,
                total_count_cache_seconds=config.worker.total_count_cache_seconds,
                publish_empty_results=config.worker.publish_empty_results,
                health_state=health,
            )
            outcome = await orchestrator.run(shutdown_event, once=once)
    finally:
        health.set_shutting_down()
        await producer.stop()

    single_cycle = once if once is not None else config.worker.cycle_interval_seconds <= 0
    if single_cycle and outcome is not None and not outcome.succeeded:
        return 1
    return 0


def setup_signal_handlers(loop: asyncio.AbstractEventLoop):
    """Set up signal handlers for graceful shutdown.

    Shutdown Behavior:
    - First SIGINT/SIGTERM: Sets the global shutdown event. The work loop
      lets the current cycle finish, then stops and closes the producer.
    - Second signal: Forces immediate shutdown by cancelling all tasks.
      Use only if graceful shutdown is stuck.

    Note: Signal handlers are not supported on Windows. On Windows,
    KeyboardInterrupt is used instead, which triggers asyncio.CancelledError.
    """

    def handle_signal(sig):
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            # Second signal - force immediate shutdown
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    # Signal handlers are not supported on Windows
    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    global logger
    args = parse_args(argv)

    if args.plan:
        total, peers = args.plan
        try:
            print_plan(total, peers)
        except ValueError as e:
            print(f"Invalid plan: {e}", file=sys.stderr)
            sys.exit(2)
        return

    log_level = getattr(logging, args.log_level)

    # JSON logs: controlled via JSON_LOGS env var (default: true)
    # Set JSON_LOGS=false for human-readable logs during local development
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_to_file = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")

    # Log directory: CLI arg > env var > default ./logs
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))

    # Pod name doubles as the worker id in log context
    worker_id = os.getenv("POD_NAME") or socket.gethostname()

    setup_logging(
        name="parking_pipeline",
        stage="worker",
        domain="parking",
        log_dir=log_dir,
        json_format=json_logs,
        console_level=log_level,
        worker_id=worker_id,
        log_to_file=log_to_file,
    )

    # Re-get logger after setup to use new handlers
    logger = get_logger(__name__)

    try:
        config = PipelineConfig.load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.interval is not None:
        if args.interval < 0:
            logger.error("Configuration error: --interval must be >= 0")
            sys.exit(1)
        config.worker.cycle_interval_seconds = args.interval
    if args.metrics_port is not None:
        config.worker.metrics_port = args.metrics_port
    if args.health_port is not None:
        config.worker.health_port = args.health_port

    if config.worker.metrics_port > 0:
        logger.info(f"Starting metrics server on port {config.worker.metrics_port}")
        start_http_server(config.worker.metrics_port)

    health_server = HealthServer(port=config.worker.health_port)
    health_server.start()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    setup_signal_handlers(loop)

    exit_code = 0
    try:
        exit_code = loop.run_until_complete(
            run_worker(config, once=True if args.once else None)
        )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except asyncio.CancelledError:
        logger.info("Worker cancelled, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        exit_code = 1
    finally:
        health_server.stop()
        loop.close()
        logger.info("Worker shutdown complete")

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
