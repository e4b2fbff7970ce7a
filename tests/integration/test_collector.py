"""Integration tests for EndpointsLister and EndpointsWatcher.

Drive the list/watch code paths through FakeCoreV1Api and FakeWatch: paging,
error wrapping, event application, 410 relist recovery and back-off.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from watchcache.cache.endpoints_cache import EndpointsCache
from watchcache.collector.endpoints_watcher import EndpointsWatcher
from watchcache.collector.lister import EndpointsLister, list_all_endpoints
from watchcache.errors import AuthoritySourceError, WatchExpiredError, WatchStreamError
from watchcache.models.resources import SnapshotSource
from watchcache.observability.metrics import MetricsSink

from .conftest import FakeCoreV1Api, FakeWatch, make_endpoints, watch_event

# ---------------------------------------------------------------------------
# Lister
# ---------------------------------------------------------------------------


class TestLister:
    async def test_lists_all_namespaces(self, fake_v1: FakeCoreV1Api) -> None:
        snapshot = await EndpointsLister(fake_v1).list()

        assert snapshot.source == SnapshotSource.DIRECT
        assert snapshot.keys() == frozenset({("default", "kubernetes"), ("kube-system", "kube-dns"), ("shop", "web")})
        dns = snapshot.get("kube-system", "kube-dns")
        assert dns is not None
        assert dns.resource_version == "11"
        assert [a["ip"] for a in dns.subsets[0]["addresses"]] == ["10.244.0.2", "10.244.0.3"]

    async def test_follows_continue_tokens(self, fake_v1: FakeCoreV1Api) -> None:
        """A page size smaller than the collection still returns every record."""
        snapshot = await EndpointsLister(fake_v1, page_size=2).list()

        assert len(snapshot) == 3
        assert [call.get("_continue") for call in fake_v1.list_calls] == [None, "2"]

    async def test_never_sends_resource_version(self, fake_v1: FakeCoreV1Api) -> None:
        """The direct list must be a quorum read, so no resourceVersion is passed."""
        await EndpointsLister(fake_v1, request_timeout=30).list()
        call = fake_v1.list_calls[0]
        assert "resource_version" not in call
        assert call["_request_timeout"] == 30

    async def test_api_exception_wrapped(self, fake_v1: FakeCoreV1Api) -> None:
        fake_v1.fail_next.append(ApiException(status=403, reason="Forbidden"))

        with pytest.raises(AuthoritySourceError) as info:
            await EndpointsLister(fake_v1).list()

        assert info.value.status == 403
        assert "Forbidden" in str(info.value)

    async def test_transport_error_wrapped(self, fake_v1: FakeCoreV1Api) -> None:
        fake_v1.fail_next.append(ConnectionResetError("reset by peer"))

        with pytest.raises(AuthoritySourceError) as info:
            await EndpointsLister(fake_v1).list()

        assert info.value.status is None

    async def test_model_objects_serialised_through_api_client(self) -> None:
        """Typed model items are converted with ApiClient.sanitize_for_serialization."""
        model = object()
        v1 = FakeCoreV1Api([model])  # type: ignore[list-item]
        api_client = MagicMock()
        api_client.sanitize_for_serialization.return_value = make_endpoints("svc", "ns", rv="3")

        records, rv = await list_all_endpoints(v1, serialize=api_client.sanitize_for_serialization)

        api_client.sanitize_for_serialization.assert_called_once_with(model)
        assert [(r.namespace, r.name, r.resource_version) for r in records] == [("ns", "svc", "3")]
        assert rv == "100"


# ---------------------------------------------------------------------------
# Watcher: event application
# ---------------------------------------------------------------------------


class TestApplyEvent:
    def _watcher(self) -> tuple[EndpointsWatcher, EndpointsCache]:
        cache = EndpointsCache()
        return EndpointsWatcher(FakeCoreV1Api(), cache, watch_factory=FakeWatch([])), cache

    def test_added_modified_deleted(self) -> None:
        watcher, cache = self._watcher()

        watcher.apply_event(watch_event("ADDED", make_endpoints("a", rv="5")))
        watcher.apply_event(watch_event("MODIFIED", make_endpoints("a", rv="6", ips=("10.0.0.9",))))
        record = cache.get_by_key("default", "a")
        assert record is not None
        assert record.resource_version == "6"
        assert record.subsets[0]["addresses"] == [{"ip": "10.0.0.9"}]

        watcher.apply_event(watch_event("DELETED", make_endpoints("a", rv="7")))
        assert cache.get_by_key("default", "a") is None
        assert cache.resource_version == "7"

    def test_bookmark_only_moves_resource_version(self) -> None:
        watcher, cache = self._watcher()
        watcher.apply_event(watch_event("BOOKMARK", {"metadata": {"resourceVersion": "900"}}))
        assert cache.resource_version == "900"
        assert len(cache) == 0

    def test_error_410_requires_relist(self) -> None:
        watcher, _ = self._watcher()
        with pytest.raises(WatchExpiredError):
            watcher.apply_event(watch_event("ERROR", {"code": 410, "message": "too old resource version"}))

    def test_other_error_raises(self) -> None:
        watcher, _ = self._watcher()
        with pytest.raises(WatchStreamError, match="500"):
            watcher.apply_event(watch_event("ERROR", {"code": 500, "message": "internal"}))

    def test_object_without_raw_object(self) -> None:
        watcher, cache = self._watcher()
        watcher.apply_event({"type": "ADDED", "object": make_endpoints("b", rv="2")})
        assert cache.get_by_key("default", "b") is not None


# ---------------------------------------------------------------------------
# Watcher: list-then-watch loop
# ---------------------------------------------------------------------------


async def _wait_for(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TestWatchLoop:
    async def test_relist_then_watch(self, fake_v1: FakeCoreV1Api) -> None:
        """Initial list fills the cache and opens the gate; watch events follow."""
        parked = asyncio.Event()
        fake_watch = FakeWatch(
            [[watch_event("ADDED", make_endpoints("new", "shop", rv="101"))]],
            on_exhausted=parked.wait,
        )
        cache = EndpointsCache()
        sink = MetricsSink()
        watcher = EndpointsWatcher(fake_v1, cache, sink=sink, watch_factory=fake_watch)

        await watcher.start()
        try:
            assert await cache.wait_until_ready(timeout=2.0)
            await _wait_for(lambda: cache.get_by_key("shop", "new") is not None)
        finally:
            await watcher.stop()

        assert len(cache) == 4
        assert fake_watch.calls[0]["resource_version"] == "100"
        assert fake_watch.calls[0]["allow_watch_bookmarks"] is True
        assert fake_watch.calls[1]["resource_version"] == "101"
        assert sink.sample("watchcache_cache_ready") == 1.0

    async def test_expired_watch_relists(self, fake_v1: FakeCoreV1Api) -> None:
        """A 410 from the stream triggers an immediate relist."""
        parked = asyncio.Event()
        fake_watch = FakeWatch([ApiException(status=410, reason="Gone")], on_exhausted=parked.wait)
        sink = MetricsSink()
        watcher = EndpointsWatcher(fake_v1, EndpointsCache(), sink=sink, watch_factory=fake_watch)

        await watcher.start()
        try:
            await _wait_for(lambda: watcher.relists >= 2)
        finally:
            await watcher.stop()

        assert sink.sample("watchcache_watch_restarts_total", {"reason": "expired"}) == 1.0

    async def test_failed_initial_list_is_retried(self, fake_v1: FakeCoreV1Api, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        """A failing list backs off and retries; readiness waits for success."""
        import watchcache.collector.endpoints_watcher as mod

        monkeypatch.setattr(mod, "_BACKOFF_INITIAL", 0.01)
        fake_v1.fail_next.append(ApiException(status=503, reason="Unavailable"))
        parked = asyncio.Event()
        cache = EndpointsCache()
        sink = MetricsSink()
        watcher = EndpointsWatcher(fake_v1, cache, sink=sink, watch_factory=FakeWatch([], on_exhausted=parked.wait))

        await watcher.start()
        try:
            assert await cache.wait_until_ready(timeout=2.0)
        finally:
            await watcher.stop()

        assert len(cache) == 3
        assert sink.sample("watchcache_watch_restarts_total", {"reason": "error"}) == 1.0

    async def test_relist_reads_from_watch_cache(self, fake_v1: FakeCoreV1Api) -> None:
        """The watcher's list is served by the API server's watch cache, not etcd."""
        watcher = EndpointsWatcher(fake_v1, EndpointsCache(), watch_factory=FakeWatch([]))
        await watcher.relist()
        assert fake_v1.list_calls[0]["resource_version"] == "0"

    async def test_watch_reconnect_does_not_relist(self, fake_v1: FakeCoreV1Api) -> None:
        """A server-side watch timeout resumes from the cache's resourceVersion.

        Records lost from the cache stay lost, so the reconciler can still
        report them against the direct list.
        """
        reconnect = asyncio.Event()
        parked = asyncio.Event()
        holds = 0

        async def hold() -> None:
            nonlocal holds
            holds += 1
            await (reconnect.wait() if holds == 1 else parked.wait())

        fake_watch = FakeWatch([], on_exhausted=hold)
        cache = EndpointsCache()
        watcher = EndpointsWatcher(fake_v1, cache, watch_factory=fake_watch)

        await watcher.start()
        try:
            assert await cache.wait_until_ready(timeout=2.0)
            cache.remove("shop", "web")
            reconnect.set()
            await _wait_for(lambda: len(fake_watch.calls) == 2)
        finally:
            await watcher.stop()

        assert watcher.relists == 1
        assert len(fake_v1.list_calls) == 1
        assert fake_watch.calls[1]["resource_version"] == "100"
        assert cache.get_by_key("shop", "web") is None

    async def test_stop_is_idempotent(self, fake_v1: FakeCoreV1Api) -> None:
        watcher = EndpointsWatcher(fake_v1, EndpointsCache(), watch_factory=FakeWatch([]))
        await watcher.stop()
        await watcher.stop()
