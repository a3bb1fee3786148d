"""
Worker health reporting.

`HealthState` is the process-wide view of how the worker is doing: the
orchestrator writes to it after every cycle and the HTTP thread reads it.

Endpoints:
    /        plain "OK" while the process is alive
    /health  200 while healthy, 503 after repeated failed cycles or on drain
    /ready   200 between startup and drain, unless unhealthy
    /status  full cycle, peer and circuit breaker view
"""

import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional, Tuple

from parking_pipeline.common.logging import log_with_context
from parking_pipeline.common.resilience import get_all_circuit_diagnostics

logger = logging.getLogger(__name__)

# Consecutive failed cycles before /health turns 503
UNHEALTHY_AFTER_ERRORS = 3

_MAX_ERROR_LENGTH = 500

_NOT_READY = ("starting", "unhealthy", "draining")


class HealthState:
    """Cycle outcomes and peer view, guarded by one lock."""

    def __init__(self):
        self._lock = threading.RLock()
        self._started_at = datetime.now(timezone.utc)
        self._healthy = True
        self._status = "starting"
        self._current_state = "idle"
        self._current_cycle_id: Optional[str] = None
        self._producer_id: Optional[str] = None
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._cycles = 0
        self._errors = 0
        self._consecutive_errors = 0
        self._peers: Dict[str, Any] = {
            "peer_count": None,
            "self_index": None,
            "degraded": False,
            "last_range": None,
        }
        self._components: Dict[str, str] = {}

    def set_producer_id(self, producer_id: str) -> None:
        with self._lock:
            self._producer_id = producer_id

    def set_ready(self) -> None:
        with self._lock:
            if self._status == "starting":
                self._status = "healthy"

    def set_running(self, cycle_id: Optional[str] = None, state: str = "running") -> None:
        with self._lock:
            self._current_state = state
            if cycle_id:
                self._current_cycle_id = cycle_id

    def set_idle(self) -> None:
        with self._lock:
            self._current_state = "idle"
            self._current_cycle_id = None

    def set_peer_view(
        self,
        peer_count: int,
        self_index: int,
        degraded: bool,
        work_range: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._peers["peer_count"] = peer_count
            self._peers["self_index"] = self_index
            self._peers["degraded"] = degraded
            if work_range is not None:
                self._peers["last_range"] = work_range

    def set_cycle_success(self) -> None:
        with self._lock:
            self._cycles += 1
            self._consecutive_errors = 0
            self._last_success = datetime.now(timezone.utc)
            self._last_error = None
            self._healthy = True
            self._status = "healthy"

    def set_cycle_error(self, error: str) -> None:
        """One failure degrades; UNHEALTHY_AFTER_ERRORS in a row is unhealthy."""
        with self._lock:
            self._cycles += 1
            self._errors += 1
            self._consecutive_errors += 1
            if len(error) > _MAX_ERROR_LENGTH:
                error = error[:_MAX_ERROR_LENGTH] + "..."
            self._last_error = error
            if self._consecutive_errors >= UNHEALTHY_AFTER_ERRORS:
                self._healthy = False
                self._status = "unhealthy"
            else:
                self._status = "degraded"

    def set_component_status(self, component: str, status: str) -> None:
        with self._lock:
            self._components[component] = status

    def set_shutting_down(self) -> None:
        with self._lock:
            self._healthy = False
            self._status = "draining"
            self._current_state = "shutting_down"

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    def get_health_status(self) -> Dict[str, Any]:
        with self._lock:
            uptime = datetime.now(timezone.utc) - self._started_at
            return {
                "healthy": self._healthy,
                "status": self._status,
                "uptime_seconds": round(uptime.total_seconds(), 1),
                "current_state": self._current_state,
                "producer_id": self._producer_id,
                "last_successful_cycle": (
                    self._last_success.isoformat() if self._last_success else None
                ),
                "components": dict(self._components),
            }

    def get_detailed_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "health": self.get_health_status(),
                "cycles": {
                    "count": self._cycles,
                    "error_count": self._errors,
                    "consecutive_errors": self._consecutive_errors,
                    "current_cycle_id": self._current_cycle_id,
                },
                "peers": dict(self._peers),
                "last_error": self._last_error,
            }


_health_state: Optional[HealthState] = None
_health_state_lock = threading.Lock()


def get_health_state() -> HealthState:
    global _health_state
    with _health_state_lock:
        if _health_state is None:
            _health_state = HealthState()
        return _health_state


def reset_health_state() -> None:
    """Drop the process-wide state (tests)."""
    global _health_state
    with _health_state_lock:
        _health_state = None


def _health() -> Tuple[int, Dict[str, Any]]:
    health = get_health_state().get_health_status()
    return (200 if health["healthy"] else 503), health


def _ready() -> Tuple[int, Dict[str, Any]]:
    status = get_health_state().status
    ready = status not in _NOT_READY
    return (200 if ready else 503), {"ready": ready, "status": status}


def _status() -> Tuple[int, Dict[str, Any]]:
    detailed = get_health_state().get_detailed_status()
    detailed["circuits"] = get_all_circuit_diagnostics()
    return 200, detailed


_ROUTES = {
    "/health": _health,
    "/ready": _ready,
    "/status": _status,
}


class HealthRequestHandler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        # Access lines go to debug, not stderr
        logger.debug("Health request: %s", args[0] if args else "")

    def _reply(self, status_code: int, body: bytes, content_type: str) -> None:
        self.send_response(status_code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/":
            self._reply(200, b"OK", "text/plain; charset=utf-8")
            return
        route = _ROUTES.get(path)
        if route is None:
            self.send_error(404, "Not Found")
            return
        status_code, data = route()
        body = json.dumps(data, default=str).encode("utf-8")
        self._reply(status_code, body, "application/json")


class HealthServer:
    """
    Serves the health endpoints from a daemon thread.

    A port of 0 disables the server unless `enabled=True`, in which case
    the OS assigns a free port and `port` holds it after start().
    """

    def __init__(
        self,
        port: int = 3000,
        host: str = "0.0.0.0",
        enabled: Optional[bool] = None,
    ):
        self.host = host
        self.port = port
        self.enabled = port > 0 if enabled is None else enabled
        self._server: Optional[HTTPServer] = None

    def start(self) -> None:
        if not self.enabled:
            logger.info("Health server disabled")
            return
        if self._server is not None:
            return

        try:
            server = HTTPServer((self.host, self.port), HealthRequestHandler)
        except OSError as e:
            logger.error(
                "Health server could not bind",
                extra={"port": self.port, "error_message": str(e)},
            )
            raise
        self._server = server
        self.port = server.server_address[1]
        threading.Thread(
            target=server.serve_forever, name="health-server", daemon=True
        ).start()

        log_with_context(
            logger,
            logging.INFO,
            "Health server listening",
            host=self.host,
            port=self.port,
        )

    def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        logger.info("Health server stopped")

    @property
    def is_running(self) -> bool:
        return self._server is not None
