"""In-memory Endpoints cache maintained by the watch stream.

The cache is the local, eventually-consistent view that the reconciler
compares against the API server.  Writers (the watcher) and readers (the
reconciler, the health endpoint) share one ``RLock``; every public method
holds it for the duration of a single call only, so a reader never sees a
half-applied relist but may observe changes between two of its own calls.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable

import structlog

from watchcache.errors import TransientLookupError
from watchcache.models.resources import ResourceRecord, Snapshot, SnapshotSource

_log = structlog.get_logger(component="cache.endpoints")


class EndpointsCache:
    """Indexed Endpoints store keyed by ``(namespace, name)``.

    Readiness is a one-shot gate: ``mark_ready()`` is called by the watcher
    after the first successful list and the flag never goes back to False.
    """

    def __init__(self, on_change: Callable[[int], None] | None = None) -> None:
        self._lock = threading.RLock()
        self._store: dict[tuple[str, str], ResourceRecord] = {}
        self._resource_version = ""
        self._ready = False
        self._ready_event: asyncio.Event | None = None
        self._on_change = on_change

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def ready(self) -> bool:
        return self._ready

    def mark_ready(self) -> None:
        """Open the readiness gate.  Idempotent."""
        with self._lock:
            if self._ready:
                return
            self._ready = True
            count = len(self._store)
        if self._ready_event is not None:
            self._ready_event.set()
        _log.info("endpoints cache synced", count=count)

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait for the initial sync.  Returns False on timeout."""
        if self._ready:
            return True
        if self._ready_event is None:
            self._ready_event = asyncio.Event()
            if self._ready:
                self._ready_event.set()
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_key(self, namespace: str, name: str) -> ResourceRecord | None:
        """Point lookup.  Raises TransientLookupError for an unusable key."""
        if not name:
            raise TransientLookupError(f"invalid cache key {namespace}/{name!r}")
        with self._lock:
            return self._store.get((namespace, name))

    def enumerate(self) -> Snapshot:
        """Capture the current contents as an immutable snapshot."""
        with self._lock:
            records = list(self._store.values())
        return Snapshot(records, SnapshotSource.CACHED)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    @property
    def resource_version(self) -> str:
        """resourceVersion of the last list or applied watch event."""
        return self._resource_version

    # ------------------------------------------------------------------
    # Writes (watcher only)
    # ------------------------------------------------------------------

    def replace(self, records: Iterable[ResourceRecord], resource_version: str) -> None:
        """Swap the whole store for a fresh list result."""
        store = {record.key: record for record in records}
        with self._lock:
            self._store = store
            self._resource_version = resource_version
            count = len(store)
        self._notify(count)

    def upsert(self, record: ResourceRecord) -> None:
        with self._lock:
            self._store[record.key] = record
            if record.resource_version:
                self._resource_version = record.resource_version
            count = len(self._store)
        self._notify(count)

    def remove(self, namespace: str, name: str, resource_version: str = "") -> None:
        with self._lock:
            self._store.pop((namespace, name), None)
            if resource_version:
                self._resource_version = resource_version
            count = len(self._store)
        self._notify(count)

    def set_resource_version(self, resource_version: str) -> None:
        """Record a watch bookmark without touching the store."""
        with self._lock:
            self._resource_version = resource_version

    def _notify(self, count: int) -> None:
        if self._on_change is not None:
            self._on_change(count)
