"""
Seoul Open Data REST client.

Requests are addressed by an inclusive 1-based window in the URL path:

    {base_url}/{api_key}/json/{service}/{start}/{end}

A successful answer nests everything under the service name:

    {"GetParkingInfo": {"list_total_count": 2115,
                        "RESULT": {"CODE": "INFO-000", "MESSAGE": "정상 처리되었습니다"},
                        "row": [...]}}

Any other RESULT.CODE, or a RESULT envelope at the top level (bad key,
unknown service, no data), is a failure carrying the upstream message.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from parking_pipeline.common.exceptions import (
    CircuitOpenError,
    ErrorCategory,
    UpstreamCountError,
    UpstreamError,
    UpstreamPageError,
    classify_http_status,
)
from parking_pipeline.common.logging import LoggedClass
from parking_pipeline.common.resilience import (
    UPSTREAM_API_CIRCUIT_CONFIG,
    get_circuit_breaker,
)
from parking_pipeline.config import UpstreamConfig
from parking_pipeline.metrics import record_upstream_request, update_circuit_breaker_state
from parking_pipeline.schemas import Record

SUCCESS_CODE = "INFO-000"


def parse_envelope(data: Any, service: str) -> Dict[str, Any]:
    """
    Unwrap the service body from a decoded response.

    Raises:
        UpstreamError: On a non-success marker or an unexpected shape
    """
    if not isinstance(data, dict):
        raise UpstreamError("Upstream response is not a JSON object")

    if service not in data:
        result = data.get("RESULT")
        if isinstance(result, dict):
            raise UpstreamError(
                str(result.get("MESSAGE", "Upstream request failed")),
                result_code=str(result.get("CODE")),
            )
        raise UpstreamError(f"Upstream response has no '{service}' body")

    body = data[service]
    if not isinstance(body, dict):
        raise UpstreamError(f"Upstream '{service}' body is not an object")

    result = body.get("RESULT") or {}
    code = result.get("CODE")
    if code != SUCCESS_CODE:
        raise UpstreamError(
            str(result.get("MESSAGE", "Upstream request failed")),
            result_code=str(code) if code is not None else None,
            category=ErrorCategory.PERMANENT,
        )
    return body


class UpstreamClient(LoggedClass):
    """
    Async client for one paginated Open Data service.

    Usage:
        async with UpstreamClient(config) as client:
            total = await client.fetch_total_count()
            rows = await client.fetch_page(1, 1000)

    All calls pass through the `upstream_api` circuit breaker. Upstream
    "no" answers are permanent and do not trip it; timeouts, transport
    errors and 5xx responses do.
    """

    log_component = "upstream_api"

    def __init__(
        self,
        config: UpstreamConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.api_endpoint = config.service
        self._session = session
        self._owns_session = session is None
        self._circuit = get_circuit_breaker(
            "upstream_api",
            UPSTREAM_API_CIRCUIT_CONFIG,
            on_state_change=lambda _old, new: update_circuit_breaker_state(
                "upstream_api", new.value
            ),
        )
        super().__init__()

    async def __aenter__(self) -> "UpstreamClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=4),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def build_url(self, start: int, end: int) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{self.config.api_key}/json/{self.config.service}/{start}/{end}"

    async def _get_json(self, url: str) -> Any:
        await self._ensure_session()
        assert self._session is not None  # for mypy

        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise UpstreamError(
                        f"Upstream HTTP error ({response.status})",
                        status_code=response.status,
                        category=classify_http_status(response.status),
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                f"Upstream request timed out after {self.config.timeout_seconds}s",
                category=ErrorCategory.TRANSIENT,
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(
                f"Upstream connection error: {e}",
                category=ErrorCategory.TRANSIENT,
                cause=e,
            ) from e
        except ValueError as e:
            raise UpstreamError(
                f"Upstream returned invalid JSON: {e}",
                category=ErrorCategory.TRANSIENT,
                cause=e,
            ) from e

    async def _request(self, kind: str, start: int, end: int) -> Dict[str, Any]:
        """Fetch and unwrap one window, recording latency and outcome."""
        url = self.build_url(start, end)
        started = time.perf_counter()

        async def _call() -> Dict[str, Any]:
            data = await self._get_json(url)
            return parse_envelope(data, self.config.service)

        try:
            body = await self._circuit.call_async(_call)
        except CircuitOpenError:
            record_upstream_request(kind, False, time.perf_counter() - started)
            self._log(
                logging.WARNING,
                "Circuit breaker open",
                circuit_name="upstream_api",
                circuit_state="open",
                page_start=start,
                page_end=end,
            )
            raise
        except UpstreamError as e:
            record_upstream_request(kind, False, time.perf_counter() - started)
            self._log(
                logging.WARNING,
                "Upstream request failed",
                operation=kind,
                page_start=start,
                page_end=end,
                result_code=e.result_code,
                http_status=e.status_code,
                error_category=e.category.value,
                error_message=e.message,
            )
            raise

        duration = time.perf_counter() - started
        record_upstream_request(kind, True, duration)
        self._log(
            logging.DEBUG,
            "Upstream request succeeded",
            operation=kind,
            page_start=start,
            page_end=end,
            duration_ms=round(duration * 1000, 2),
        )
        return body

    async def fetch_total_count(self) -> int:
        """
        Current total record count.

        Raises:
            UpstreamCountError: If the count request fails for any reason
        """
        try:
            body = await self._request("count", 1, 1)
        except UpstreamError as e:
            raise UpstreamCountError(
                f"Total count request failed: {e.message}",
                result_code=e.result_code,
                status_code=e.status_code,
                category=e.category,
                cause=e,
            ) from e
        except CircuitOpenError as e:
            raise UpstreamCountError(
                "Total count request rejected: circuit open",
                category=ErrorCategory.CIRCUIT_OPEN,
                cause=e,
            ) from e

        try:
            return int(body.get("list_total_count", 0))
        except (TypeError, ValueError) as e:
            raise UpstreamCountError(
                f"Invalid list_total_count: {body.get('list_total_count')!r}",
                category=ErrorCategory.PERMANENT,
                cause=e,
            ) from e

    async def fetch_page(self, start: int, end: int) -> List[Record]:
        """
        Records for the inclusive window [start, end].

        Raises:
            UpstreamPageError: If the request fails or the body is malformed
        """
        try:
            body = await self._request("page", start, end)
        except UpstreamError as e:
            raise UpstreamPageError(
                e.message,
                page_start=start,
                page_end=end,
                result_code=e.result_code,
                status_code=e.status_code,
                category=e.category,
                cause=e,
            ) from e
        except CircuitOpenError as e:
            raise UpstreamPageError(
                "Page request rejected: circuit open",
                page_start=start,
                page_end=end,
                category=ErrorCategory.CIRCUIT_OPEN,
                cause=e,
            ) from e

        rows = body.get("row", [])
        if not isinstance(rows, list):
            raise UpstreamPageError(
                "Upstream 'row' is not a list",
                page_start=start,
                page_end=end,
                category=ErrorCategory.PERMANENT,
            )
        return rows
