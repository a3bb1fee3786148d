"""
Root logger wiring for the worker process.

Console output is human readable. File output is one JSON object per line,
rotated by size and grouped per day:

    logs/parking/2025-01-15/parking_worker_20250115_parking-api-0.log
"""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("urllib3", "aiohttp", "aiokafka", "kafka")


def get_log_file_path(
    log_dir: Path,
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> Path:
    """Daily log file for this domain/stage; instance_id keeps replicas apart."""
    now = datetime.now()
    parts = [p for p in (domain, stage) if p] or ["pipeline"]
    parts.append(now.strftime("%Y%m%d"))
    if instance_id:
        parts.append(instance_id)

    folder = log_dir / domain if domain else log_dir
    return folder / now.strftime("%Y-%m-%d") / ("_".join(parts) + ".log")


def setup_logging(
    name: str = "pipeline",
    stage: Optional[str] = None,
    domain: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = logging.INFO,
    worker_id: Optional[str] = None,
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Replace the root handlers with a console handler and, unless
    log_to_file is off, a rotating file handler at DEBUG.

    worker_id, stage and domain go into the log context so every record
    carries them; worker_id also names the log file.
    """
    set_log_context(worker_id=worker_id, stage=stage, domain=domain)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    log_file: Optional[Path] = None
    if log_to_file:
        log_file = get_log_file_path(
            log_dir or DEFAULT_LOG_DIR, domain=domain, stage=stage, instance_id=worker_id
        )
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=DEFAULT_MAX_BYTES,
            backupCount=DEFAULT_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
        root_logger.addHandler(file_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug("Logging initialized", extra={"log_file": str(log_file) if log_file else None})
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def generate_cycle_id() -> str:
    """c-YYYYMMDD-HHMMSS-xxxx, the last part random hex."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
