"""Tests for health state and the health HTTP endpoint."""

import json
import urllib.error
import urllib.request

import pytest

from parking_pipeline.health import HealthServer, HealthState, get_health_state


class TestHealthState:
    """Tests for HealthState transitions."""

    def test_starts_healthy_but_not_ready(self):
        state = HealthState()

        assert state.is_healthy
        assert state.status == "starting"

    def test_ready_after_startup(self):
        state = HealthState()
        state.set_ready()

        assert state.status == "healthy"

    def test_single_error_degrades(self):
        state = HealthState()
        state.set_ready()
        state.set_cycle_error("page failed")

        assert state.is_healthy
        assert state.status == "degraded"
        assert state.get_detailed_status()["last_error"] == "page failed"

    def test_consecutive_errors_make_unhealthy(self):
        state = HealthState()
        for _ in range(3):
            state.set_cycle_error("down")

        assert not state.is_healthy
        assert state.status == "unhealthy"

    def test_success_resets_errors(self):
        state = HealthState()
        for _ in range(3):
            state.set_cycle_error("down")
        state.set_cycle_success()

        detailed = state.get_detailed_status()
        assert state.is_healthy
        assert detailed["cycles"]["consecutive_errors"] == 0
        assert detailed["health"]["last_successful_cycle"] is not None

    def test_long_errors_truncated(self):
        state = HealthState()
        state.set_cycle_error("x" * 2000)

        assert len(state.get_detailed_status()["last_error"]) == 503

    def test_peer_view_in_status(self):
        state = HealthState()
        state.set_peer_view(3, 1, degraded=False, work_range="[35, 68]")

        peers = state.get_detailed_status()["peers"]
        assert peers == {"peer_count": 3, "self_index": 1, "degraded": False, "last_range": "[35, 68]"}

    def test_shutting_down(self):
        state = HealthState()
        state.set_shutting_down()

        assert not state.is_healthy
        assert state.status == "draining"

    def test_global_instance(self):
        assert get_health_state() is get_health_state()


def fetch(port, path):
    """GET path; return (status, body)."""
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{port}{path}", timeout=5) as resp:
            return resp.status, resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode("utf-8")


class TestHealthServer:
    """Tests for the HTTP endpoints."""

    @pytest.fixture
    def server(self):
        server = HealthServer(port=0, host="127.0.0.1", enabled=True)
        server.start()
        yield server
        server.stop()

    def test_root_answers_ok(self, server):
        assert fetch(server.port, "/") == (200, "OK")

    def test_health_reflects_state(self, server):
        status, body = fetch(server.port, "/health")
        assert status == 200
        assert json.loads(body)["healthy"] is True

        for _ in range(3):
            get_health_state().set_cycle_error("down")

        status, body = fetch(server.port, "/health")
        assert status == 503
        assert json.loads(body)["status"] == "unhealthy"

    def test_ready_after_startup(self, server):
        assert fetch(server.port, "/ready")[0] == 503

        get_health_state().set_ready()

        status, body = fetch(server.port, "/ready")
        assert status == 200
        assert json.loads(body) == {"ready": True, "status": "healthy"}

    def test_status_includes_circuits(self, server):
        from parking_pipeline.common.resilience import get_circuit_breaker

        get_circuit_breaker("upstream_api")

        status, body = fetch(server.port, "/status")
        data = json.loads(body)
        assert status == 200
        assert data["circuits"]["upstream_api"]["state"] == "closed"
        assert "peers" in data

    def test_unknown_path(self, server):
        assert fetch(server.port, "/metrics")[0] == 404

    def test_port_zero_disables_by_default(self):
        server = HealthServer(port=0)
        server.start()

        assert not server.is_running
