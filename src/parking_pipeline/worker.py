"""
Work cycle orchestration.

One cycle runs discover -> partition -> fetch -> filter -> publish:

    IDLE -> DISCOVERING_PEERS -> COMPUTING_RANGE -> FETCHING
         -> FILTERING -> PUBLISHING -> IDLE

Any exception moves the cycle to FAILED; the outcome records the state
it failed in and the orchestrator returns to IDLE, ready for the next
cycle. Nothing is carried between cycles except an optional, TTL-bound
cache of the upstream total.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from core.logging import clear_cycle_id, generate_cycle_id, set_log_context
from parking_pipeline.common.exceptions import CycleError, PipelineError
from parking_pipeline.common.logging import LoggedClass
from parking_pipeline.directory import PeerDirectory, PeerSet
from parking_pipeline.filters import RecordFilter
from parking_pipeline.health import HealthState, get_health_state
from parking_pipeline.metrics import (
    record_assignment,
    record_cycle,
    record_cycle_failure,
    record_records,
)
from parking_pipeline.partitioning import WorkRange, compute_range
from parking_pipeline.publisher import Publisher, make_result
from parking_pipeline.upstream import PagedFetcher, UpstreamClient


class CycleState(Enum):
    IDLE = "idle"
    DISCOVERING_PEERS = "discovering_peers"
    COMPUTING_RANGE = "computing_range"
    FETCHING = "fetching"
    FILTERING = "filtering"
    PUBLISHING = "publishing"
    FAILED = "failed"


class CycleStatus:
    SUCCEEDED = "succeeded"
    PUBLISH_FAILED = "publish_failed"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_BUSY = "skipped_busy"
    FAILED = "failed"


@dataclass
class CycleOutcome:
    """Result of one run_cycle() call."""

    cycle_id: str
    status: str = CycleStatus.FAILED
    failed_state: Optional[CycleState] = None
    error: Optional[PipelineError] = None
    peer_set: Optional[PeerSet] = None
    total: Optional[int] = None
    work_range: Optional[WorkRange] = None
    records_fetched: int = 0
    records_matched: int = 0
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status in (CycleStatus.SUCCEEDED, CycleStatus.SKIPPED_EMPTY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status,
            "failed_state": self.failed_state.value if self.failed_state else None,
            "error": str(self.error) if self.error else None,
            "peer_count": self.peer_set.peer_count if self.peer_set else None,
            "self_index": self.peer_set.self_index if self.peer_set else None,
            "total": self.total,
            "range": str(self.work_range) if self.work_range else None,
            "records_fetched": self.records_fetched,
            "records_matched": self.records_matched,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class WorkCycleOrchestrator(LoggedClass):
    """
    Drives work cycles for one process.

    At most one cycle runs at a time; a trigger that arrives while a
    cycle is in flight returns a `skipped_busy` outcome immediately.

    Usage:
        orchestrator = WorkCycleOrchestrator(
            directory, client, fetcher, record_filter, publisher,
            topic="parking-topic", producer_id="parking-api-0",
        )
        outcome = await orchestrator.run_cycle()
    """

    log_component = "orchestrator"

    def __init__(
        self,
        directory: PeerDirectory,
        client: UpstreamClient,
        fetcher: PagedFetcher,
        record_filter: RecordFilter,
        publisher: Publisher,
        topic: str,
        producer_id: str,
        role_label: Optional[str] = None,
        cycle_interval_seconds: float = 0.0,
        total_count_cache_seconds: float = 0.0,
        publish_empty_results: bool = True,
        health_state: Optional[HealthState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = directory
        self.client = client
        self.fetcher = fetcher
        self.record_filter = record_filter
        self.publisher = publisher
        self.topic = topic
        self.producer_id = producer_id
        self.role_label = role_label
        self.cycle_interval_seconds = cycle_interval_seconds
        self.total_count_cache_seconds = total_count_cache_seconds
        self.publish_empty_results = publish_empty_results
        self.health = health_state or get_health_state()
        self._clock = clock

        self._state = CycleState.IDLE
        self._lock = asyncio.Lock()
        self._cached_total: Optional[Tuple[int, float]] = None
        super().__init__()

    @property
    def state(self) -> CycleState:
        return self._state

    def _enter(self, state: CycleState, cycle_id: str) -> None:
        self._state = state
        self.health.set_running(cycle_id, state=state.value)

    async def _get_total_count(self) -> int:
        """Upstream total, from the process-local cache while fresh."""
        ttl = self.total_count_cache_seconds
        now = self._clock()
        if ttl > 0 and self._cached_total is not None:
            total, fetched_at = self._cached_total
            if now - fetched_at < ttl:
                return total

        total = await self.client.fetch_total_count()
        if ttl > 0:
            self._cached_total = (total, now)
        return total

    def invalidate_total_cache(self) -> None:
        self._cached_total = None

    async def run_cycle(self) -> CycleOutcome:
        """
        Execute one complete work cycle.

        Never raises except for cancellation: every failure is reported in
        the returned outcome.
        """
        if self._lock.locked():
            outcome = CycleOutcome(cycle_id=generate_cycle_id(), status=CycleStatus.SKIPPED_BUSY)
            record_cycle(outcome.status, 0.0)
            self._log(logging.WARNING, "Cycle already in progress, skipping trigger")
            return outcome

        async with self._lock:
            return await self._run_cycle_locked()

    async def _run_cycle_locked(self) -> CycleOutcome:
        cycle_id = generate_cycle_id()
        outcome = CycleOutcome(cycle_id=cycle_id)
        set_log_context(cycle_id=cycle_id)
        started = time.perf_counter()

        try:
            self._enter(CycleState.DISCOVERING_PEERS, cycle_id)
            peer_set = await self.directory.list_peers(self.role_label)
            outcome.peer_set = peer_set

            self._enter(CycleState.COMPUTING_RANGE, cycle_id)
            total = await self._get_total_count()
            work_range = compute_range(total, peer_set.self_index, peer_set.peer_count)
            outcome.total = total
            outcome.work_range = work_range
            record_assignment(total, len(work_range))
            self.health.set_peer_view(
                peer_set.peer_count,
                peer_set.self_index,
                peer_set.degraded,
                work_range=str(work_range),
            )
            self._log(
                logging.INFO,
                "Range computed",
                total=total,
                peer_count=peer_set.peer_count,
                self_index=peer_set.self_index,
                degraded=peer_set.degraded,
                range_start=work_range.start,
                range_end=work_range.end,
                range_size=len(work_range),
            )

            self._enter(CycleState.FETCHING, cycle_id)
            records = await self.fetcher.fetch_range(work_range.start, work_range.end)
            outcome.records_fetched = len(records)

            self._enter(CycleState.FILTERING, cycle_id)
            matched = self.record_filter.apply(records)
            outcome.records_matched = len(matched)
            record_records(len(records), len(matched))

            self._enter(CycleState.PUBLISHING, cycle_id)
            if not matched and not self.publish_empty_results:
                outcome.status = CycleStatus.SKIPPED_EMPTY
            else:
                result = make_result(
                    self.producer_id, work_range.start, work_range.end, matched
                )
                published = await self.publisher.publish(self.topic, result)
                outcome.status = (
                    CycleStatus.SUCCEEDED if published else CycleStatus.PUBLISH_FAILED
                )

        except Exception as e:
            outcome.failed_state = self._state
            self._state = CycleState.FAILED
            outcome.status = CycleStatus.FAILED
            if isinstance(e, PipelineError):
                outcome.error = e
            else:
                outcome.error = CycleError(
                    f"Unexpected error in {outcome.failed_state.value}: {e}",
                    state=outcome.failed_state.value,
                    cause=e,
                )
            record_cycle_failure(
                outcome.failed_state.value, outcome.error.category.value
            )
            self._log_exception(
                e,
                "Work cycle failed",
                cycle_status=outcome.status,
                failed_state=outcome.failed_state.value,
                # Typed pipeline errors are expected; tracebacks only for surprises
                include_traceback=not isinstance(e, PipelineError),
            )

        finally:
            outcome.duration_seconds = time.perf_counter() - started
            self._state = CycleState.IDLE
            self.health.set_idle()
            clear_cycle_id()

        record_cycle(outcome.status, outcome.duration_seconds)
        if outcome.status in (CycleStatus.SUCCEEDED, CycleStatus.SKIPPED_EMPTY):
            self.health.set_cycle_success()
        else:
            self.health.set_cycle_error(
                str(outcome.error) if outcome.error else f"cycle {outcome.status}"
            )

        self._log(
            logging.INFO,
            "Work cycle finished",
            cycle_id=cycle_id,
            cycle_status=outcome.status,
            records_fetched=outcome.records_fetched,
            records_matched=outcome.records_matched,
            duration_ms=round(outcome.duration_seconds * 1000, 2),
        )
        return outcome

    async def run(
        self,
        shutdown_event: asyncio.Event,
        once: Optional[bool] = None,
    ) -> Optional[CycleOutcome]:
        """
        Run cycles until shutdown.

        Args:
            shutdown_event: Set to stop after the current cycle
            once: Run exactly one cycle (default: when the interval is 0)

        Returns:
            The last cycle's outcome, or None if shutdown came first
        """
        if once is None:
            once = self.cycle_interval_seconds <= 0

        last: Optional[CycleOutcome] = None
        self._log(
            logging.INFO,
            "Starting work loop",
            operation="once" if once else "interval",
        )

        while not shutdown_event.is_set():
            last = await self.run_cycle()
            if once:
                break

            # Wait for next interval or shutdown
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=self.cycle_interval_seconds,
                )
                break
            except asyncio.TimeoutError:
                pass

        self._log(logging.INFO, "Work loop ended")
        return last
