"""EndpointsWatcher: keeps the EndpointsCache current from a watch stream.

Lifecycle:
    relist  -> list with resourceVersion="0" (served by the API server's
               watch cache), replace the cache contents, open the gate
    watch   -> apply ADDED / MODIFIED / DELETED from the list resourceVersion;
               a server-side watch timeout reconnects from the last seen
               resourceVersion without listing again

The cache is never refilled from etcd, so drift in the API server's watch
cache stays visible to the reconciler.  Only a ``410 Gone`` (immediate) or
another watch failure (after an exponential back-off capped at 30 seconds)
triggers a relist.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog
from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from watchcache.cache.endpoints_cache import EndpointsCache
from watchcache.collector.lister import list_all_endpoints, to_raw
from watchcache.errors import WatchExpiredError, WatchStreamError
from watchcache.models.resources import ResourceRecord
from watchcache.observability.metrics import MetricsSink

_log = structlog.get_logger(component="collector.endpoints_watcher")

_BACKOFF_INITIAL = 1.0
_BACKOFF_MAX = 30.0
_HTTP_GONE = 410

# Any resourceVersion lets the API server answer from its watch cache.
WATCH_CACHE_RESOURCE_VERSION = "0"


class EndpointsWatcher:
    """List-then-watch loop feeding an EndpointsCache.

    ``watch_factory`` defaults to ``kubernetes_asyncio.watch.Watch`` and is
    replaceable in tests.
    """

    def __init__(
        self,
        v1: Any,
        cache: EndpointsCache,
        api_client: Any = None,
        sink: MetricsSink | None = None,
        watch_timeout: int = 300,
        request_timeout: float | None = None,
        watch_factory: Callable[[], Any] = watch.Watch,
    ) -> None:
        self._v1 = v1
        self._cache = cache
        self._serialize = api_client.sanitize_for_serialization if api_client is not None else None
        self._sink = sink
        self._watch_timeout = watch_timeout
        self._request_timeout = request_timeout
        self._watch_factory = watch_factory
        self._task: asyncio.Task[None] | None = None
        self.relists = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="endpoints-watcher")
        _log.info("endpoints watcher started", watch_timeout=self._watch_timeout)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        _log.info("endpoints watcher stopped", relists=self.relists)

    async def _run(self) -> None:
        backoff = _BACKOFF_INITIAL
        while True:
            try:
                await self.relist()
                backoff = _BACKOFF_INITIAL
                await self._watch()
            except asyncio.CancelledError:
                raise
            except WatchExpiredError:
                _log.info("endpoints watch expired, relisting")
                self._record_restart("expired")
            except Exception as exc:
                _log.warning("endpoints watch failed", error=str(exc), retry_in=backoff)
                self._record_restart("error")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _BACKOFF_MAX)

    # ------------------------------------------------------------------
    # List and watch
    # ------------------------------------------------------------------

    async def relist(self) -> None:
        """Replace the cache contents with the watch cache's list and mark it ready."""
        records, resource_version = await list_all_endpoints(
            self._v1,
            serialize=self._serialize,
            request_timeout=self._request_timeout,
            resource_version=WATCH_CACHE_RESOURCE_VERSION,
        )
        self._cache.replace(records, resource_version)
        self.relists += 1
        _log.debug("endpoints relisted", count=len(records), resource_version=resource_version)
        if not self._cache.ready():
            self._cache.mark_ready()
            if self._sink is not None:
                self._sink.set_cache_ready(True)

    async def _watch(self) -> None:
        """Follow the watch stream, reconnecting whenever the server closes it."""
        while True:
            w = self._watch_factory()
            try:
                async with w.stream(
                    self._v1.list_endpoints_for_all_namespaces,
                    resource_version=self._cache.resource_version,
                    timeout_seconds=self._watch_timeout,
                    allow_watch_bookmarks=True,
                ) as stream:
                    async for event in stream:
                        self.apply_event(event)
            except ApiException as exc:
                if exc.status == _HTTP_GONE:
                    raise WatchExpiredError(str(exc.reason)) from exc
                raise
            _log.debug("endpoints watch closed, reconnecting", resource_version=self._cache.resource_version)

    def apply_event(self, event: dict[str, Any]) -> None:
        """Apply one watch event to the cache."""
        event_type = event.get("type", "")
        raw = event.get("raw_object")
        if not isinstance(raw, dict):
            raw = to_raw(event.get("object") or {}, self._serialize)

        if event_type == "ERROR":
            if raw.get("code") == _HTTP_GONE:
                raise WatchExpiredError(str(raw.get("message", "")))
            raise WatchStreamError(f"watch error {raw.get('code')}: {raw.get('message', '')}")

        if event_type == "BOOKMARK":
            rv = (raw.get("metadata") or {}).get("resourceVersion")
            if rv:
                self._cache.set_resource_version(str(rv))
            return

        record = ResourceRecord.from_raw(raw)
        if event_type in ("ADDED", "MODIFIED"):
            self._cache.upsert(record)
        elif event_type == "DELETED":
            self._cache.remove(record.namespace, record.name, record.resource_version)
        else:
            _log.debug("ignoring watch event", type=event_type)

    def _record_restart(self, reason: str) -> None:
        if self._sink is not None:
            self._sink.increment_watch_restart(reason)
