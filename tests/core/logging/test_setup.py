"""Tests for logging setup, formatters and context."""

import json
import logging
import re
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

import pytest

from core.logging.context import (
    clear_cycle_id,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import generate_cycle_id, get_log_file_path, setup_logging


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="parking_pipeline.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def cleanup():
    """Reset context and root handlers around each test."""
    clear_log_context()
    yield
    clear_log_context()
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_creates_log_file_in_domain_date_folder(self, tmp_path):
        setup_logging(
            name="parking_pipeline",
            stage="worker",
            domain="parking",
            log_dir=tmp_path,
            worker_id="parking-api-0",
        )
        logging.getLogger("parking_pipeline").info("Peers discovered")

        date_folder = tmp_path / "parking" / datetime.now().strftime("%Y-%m-%d")
        files = list(date_folder.glob("parking_worker_*_parking-api-0.log"))
        assert len(files) == 1

    def test_file_lines_are_json(self, tmp_path):
        setup_logging(stage="worker", domain="parking", log_dir=tmp_path, worker_id="w-1")
        logging.getLogger("parking_pipeline").info("Range computed", extra={"range_start": 35})
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = next(tmp_path.rglob("*.log"))
        entries = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        entry = next(e for e in entries if e["msg"] == "Range computed")
        assert entry["range_start"] == 35
        assert entry["worker_id"] == "w-1"
        assert entry["domain"] == "parking"

    def test_plain_text_file_when_json_disabled(self, tmp_path):
        setup_logging(domain="parking", log_dir=tmp_path, json_format=False, worker_id="w-3")
        logging.getLogger("parking_pipeline").info("Cycle skipped")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = next(tmp_path.rglob("*.log")).read_text(encoding="utf-8")
        assert "[w-3]" in text
        assert "Cycle skipped" in text
        assert not text.lstrip().startswith("{")

    def test_console_only(self, tmp_path):
        setup_logging(domain="parking", log_dir=tmp_path, log_to_file=False)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert not isinstance(handlers[0], RotatingFileHandler)
        assert not any(tmp_path.iterdir())

    def test_reinit_does_not_duplicate_handlers(self, tmp_path):
        setup_logging(domain="parking", log_dir=tmp_path)
        setup_logging(domain="parking", log_dir=tmp_path)

        assert len(logging.getLogger().handlers) == 2

    def test_sets_context(self, tmp_path):
        setup_logging(stage="worker", domain="parking", log_dir=tmp_path, worker_id="w-2")

        ctx = get_log_context()
        assert ctx["worker_id"] == "w-2"
        assert ctx["stage"] == "worker"
        assert ctx["domain"] == "parking"

    def test_noisy_loggers_quieted(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_file=False)

        assert logging.getLogger("aiokafka").level == logging.WARNING


class TestLogFilePath:
    """Tests for get_log_file_path function."""

    def test_without_domain(self, tmp_path):
        path = get_log_file_path(tmp_path, stage="worker")

        assert path.parent.parent == tmp_path
        assert path.name.startswith("worker_")

    def test_instance_suffix(self, tmp_path):
        path = get_log_file_path(tmp_path, domain="parking", stage="worker", instance_id="p42")

        assert path.name.endswith("_p42.log")


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_extra_fields_and_context(self):
        set_log_context(worker_id="parking-api-1", cycle_id="c-20250101-000000-abcd")

        entry = json.loads(
            JSONFormatter().format(make_record("Peers discovered", peer_count=3, self_index=1))
        )

        assert entry["msg"] == "Peers discovered"
        assert entry["level"] == "INFO"
        assert entry["peer_count"] == 3
        assert entry["self_index"] == 1
        assert entry["worker_id"] == "parking-api-1"
        assert entry["cycle_id"] == "c-20250101-000000-abcd"
        assert entry["ts"].endswith("Z")

    def test_unknown_extras_dropped(self):
        entry = json.loads(JSONFormatter().format(make_record(something_else="x")))

        assert "something_else" not in entry

    def test_secrets_redacted(self):
        entry = json.loads(
            JSONFormatter().format(make_record(api_key="real-key", token="real-token"))
        )

        assert entry["api_key"] == "***"
        assert entry["token"] == "***"

    def test_error_includes_source_and_exception(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = make_record("failed", level=logging.ERROR)
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert entry["file"].endswith(":10")
        assert "ValueError: bad row" in entry["exception"]

    def test_non_ascii_preserved(self):
        entry = JSONFormatter().format(make_record("중구 명동"))

        assert "중구 명동" in entry


class TestConsoleFormatter:
    """Tests for ConsoleFormatter."""

    def test_includes_worker_and_cycle(self):
        set_log_context(worker_id="parking-api-0", stage="worker", cycle_id="c-1")

        line = ConsoleFormatter().format(make_record("Work cycle finished"))

        assert "INFO" in line
        assert "[parking-api-0]" in line
        assert "[worker]" in line
        assert line.endswith("[c-1] Work cycle finished")

    def test_without_context(self):
        line = ConsoleFormatter().format(make_record("plain"))

        assert line.endswith(" - INFO - plain")


class TestContext:
    """Tests for log context helpers."""

    def test_none_values_do_not_overwrite(self):
        set_log_context(worker_id="w-1", stage="worker")
        set_log_context(cycle_id="c-1")

        ctx = get_log_context()
        assert ctx["worker_id"] == "w-1"
        assert ctx["cycle_id"] == "c-1"

    def test_clear_cycle_id_keeps_worker(self):
        set_log_context(worker_id="w-1", cycle_id="c-1")
        clear_cycle_id()

        ctx = get_log_context()
        assert ctx["cycle_id"] is None
        assert ctx["worker_id"] == "w-1"


class TestGenerateCycleId:
    """Tests for generate_cycle_id function."""

    def test_format(self):
        assert re.fullmatch(r"c-\d{8}-\d{6}-[0-9a-f]{4}", generate_cycle_id())

    def test_unique(self):
        ids = {generate_cycle_id() for _ in range(50)}

        assert len(ids) > 1
