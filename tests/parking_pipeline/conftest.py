"""
Shared fixtures for parking_pipeline tests.

HTTP is faked at the aiohttp session boundary: FakeSession.get() returns
an async context manager yielding a canned response (or raising a
canned exception), and records every call for assertions.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from parking_pipeline.config import DirectoryConfig, KafkaConfig, UpstreamConfig, WorkerConfig


def make_response(status: int = 200, json_data: Any = None, json_exc: Optional[Exception] = None):
    """Mock aiohttp response."""
    response = MagicMock()
    response.status = status
    if json_exc is not None:
        response.json = AsyncMock(side_effect=json_exc)
    else:
        response.json = AsyncMock(return_value=json_data)
    return response


class _RequestContext:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stand-in for aiohttp.ClientSession serving queued outcomes in order."""

    def __init__(self, outcomes: List[Any]):
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def get(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {url}")
        return _RequestContext(self.outcomes.pop(0))

    async def close(self):
        self.closed = True


def upstream_body(rows: List[Dict[str, Any]], total: Optional[int] = None,
                  service: str = "GetParkingInfo", code: str = "INFO-000",
                  message: str = "정상 처리되었습니다") -> Dict[str, Any]:
    """Decoded upstream payload."""
    return {
        service: {
            "list_total_count": len(rows) if total is None else total,
            "RESULT": {"CODE": code, "MESSAGE": message},
            "row": rows,
        }
    }


def parking_rows(start: int, end: int, addr: str = "종로구 훈정동 2-0") -> List[Dict[str, Any]]:
    return [
        {"PKLT_CD": str(i), "PKLT_NM": f"주차장 {i}", "ADDR": addr}
        for i in range(start, end + 1)
    ]


@pytest.fixture
def fake_session():
    """Factory: fake_session([response_or_exception, ...])."""
    return FakeSession


@pytest.fixture
def response():
    """Factory for mock aiohttp responses."""
    return make_response


@pytest.fixture
def upstream_config():
    return UpstreamConfig(
        api_key="test-key",
        base_url="http://openapi.example.test:8088",
        max_batch_size=1000,
        timeout_seconds=5.0,
    )


@pytest.fixture
def directory_config(tmp_path):
    token = tmp_path / "token"
    token.write_text("test-token\n")
    return DirectoryConfig(
        api_url="https://k8s.example.test",
        namespace="parking",
        token_path=str(token),
        ca_cert_path=str(tmp_path / "missing-ca.crt"),
    )


@pytest.fixture
def kafka_config():
    return KafkaConfig(bootstrap_servers="localhost:9092")


@pytest.fixture
def worker_config():
    return WorkerConfig(pod_name="parking-api-0")


@pytest.fixture
def make_upstream_body():
    """Factory for decoded upstream payloads."""
    return upstream_body


@pytest.fixture
def make_rows():
    """Factory for upstream parking rows."""
    return parking_rows
