"""Periodic reconciliation loop.

One tick:
    1. bump the liveness counter
    2. list endpoints directly from the API server (skip tick on failure)
    3. enumerate the local cache
    4. skip the tick if either side is empty
    5. classify and report every discrepancy

Ticks never overlap.  ``run()`` waits the fixed interval on a stop event, so
a shutdown request takes effect at the next sleep boundary and never in the
middle of a classification.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol

import structlog

from watchcache.errors import AuthoritySourceError, DegenerateSnapshotError
from watchcache.models.resources import (
    DiscrepancyEvent,
    ResourceRecord,
    Snapshot,
    TickOutcome,
    TickResult,
)
from watchcache.observability.metrics import MetricsSink
from watchcache.reconciler.diff import cap_label, classify

_log = structlog.get_logger(component="reconciler")

DEFAULT_INTERVAL_SECONDS = 300.0


class AuthoritativeLister(Protocol):
    async def list(self) -> Snapshot: ...


class CacheStore(Protocol):
    def ready(self) -> bool: ...

    def enumerate(self) -> Snapshot: ...

    def get_by_key(self, namespace: str, name: str) -> ResourceRecord | None: ...


def ensure_non_degenerate(direct: Snapshot, cached: Snapshot) -> None:
    """Raise DegenerateSnapshotError if either snapshot is empty."""
    if not direct or not cached:
        raise DegenerateSnapshotError(len(direct), len(cached))


class Reconciler:
    """Compares the API server's direct list with the local cache on a timer.

    The sink is injected so tests and the application each own their registry.
    """

    def __init__(
        self,
        lister: AuthoritativeLister,
        cache: CacheStore,
        sink: MetricsSink,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_label_length: int = 0,
    ) -> None:
        self._lister = lister
        self._cache = cache
        self._sink = sink
        self._interval = interval_seconds
        self._max_label_length = max_label_length
        self._stop_event = asyncio.Event()
        self.last_result: TickResult | None = None
        self.ticks = 0

    # ------------------------------------------------------------------
    # Single tick
    # ------------------------------------------------------------------

    async def run_once(self) -> TickResult:
        """Execute one comparison cycle and report its discrepancies."""
        started_at = datetime.now(tz=UTC)
        start = time.monotonic()
        self._sink.increment_tick_counter()

        try:
            direct = await self._lister.list()
        except AuthoritySourceError as exc:
            _log.warning("could not get list of direct endpoints", error=str(exc), status=exc.status)
            return self._finish(TickResult(outcome=TickOutcome.FAILED, started_at=started_at, error=str(exc)), start)

        cached = self._cache.enumerate()
        for key in direct.duplicates:
            _log.warning("duplicate endpoint in direct list", namespace=key[0], name=key[1])

        try:
            ensure_non_degenerate(direct, cached)
        except DegenerateSnapshotError as exc:
            _log.warning("got empty endpoint list", direct=exc.direct_count, cached=exc.cached_count)
            return self._finish(
                TickResult(
                    outcome=TickOutcome.DEGENERATE,
                    started_at=started_at,
                    direct_count=len(direct),
                    cached_count=len(cached),
                    error=str(exc),
                ),
                start,
            )

        events = classify(direct, cached, lookup=self._cache.get_by_key)
        reported = tuple(self._report(event) for event in events)

        return self._finish(
            TickResult(
                outcome=TickOutcome.DISCREPANCIES if reported else TickOutcome.CLEAN,
                started_at=started_at,
                direct_count=len(direct),
                cached_count=len(cached),
                events=reported,
            ),
            start,
        )

    def _report(self, event: DiscrepancyEvent) -> DiscrepancyEvent:
        if self._max_label_length > 0:
            event = replace(event, detail=cap_label(event.detail, self._max_label_length))
        self._sink.record_event(event)
        return event

    def _finish(self, result: TickResult, start: float) -> TickResult:
        result = replace(result, duration_seconds=time.monotonic() - start)
        self._sink.observe_tick(result)
        self.last_result = result
        self.ticks += 1
        _log.info(
            "reconcile tick finished",
            outcome=result.outcome.value,
            direct=result.direct_count,
            cached=result.cached_count,
            discrepancies=len(result.events),
            duration_ms=int(result.duration_seconds * 1000),
        )
        return result

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Tick forever until ``stop()`` is called."""
        _log.info("reconciler started", interval_seconds=self._interval)
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                _log.exception("reconcile tick raised unexpectedly")
            if await self._sleep():
                break
        _log.info("reconciler stopped", ticks=self.ticks)

    async def _sleep(self) -> bool:
        """Wait one interval.  Returns True if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        except TimeoutError:
            return False
        return True

    def stop(self) -> None:
        """Request the loop to exit at its next sleep boundary."""
        self._stop_event.set()
