"""Shared fakes for watchcache integration tests.

Provides an in-memory stand-in for ``CoreV1Api`` and for
``kubernetes_asyncio.watch.Watch`` so list/watch pipelines can be exercised
end-to-end without touching a real cluster.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_endpoints(
    name: str,
    namespace: str = "default",
    rv: str = "1",
    ips: tuple[str, ...] = ("10.0.0.1",),
    port: int = 8080,
) -> dict[str, Any]:
    """Return a serialised v1.Endpoints object."""
    return {
        "apiVersion": "v1",
        "kind": "Endpoints",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": rv},
        "subsets": [
            {
                "addresses": [{"ip": ip} for ip in ips],
                "ports": [{"name": "http", "port": port, "protocol": "TCP"}],
            }
        ],
    }


def watch_event(event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "object": obj, "raw_object": obj}


# ---------------------------------------------------------------------------
# Fake API
# ---------------------------------------------------------------------------


class FakeCoreV1Api:
    """Serves ``list_endpoints_for_all_namespaces`` from an in-memory store.

    ``page_size`` on the request is honoured with numeric continue tokens.
    Queue exceptions on ``fail_next`` to make the next list calls raise.
    """

    def __init__(self, objects: list[dict[str, Any]] | None = None, resource_version: str = "100") -> None:
        self.objects = list(objects or [])
        self.resource_version = resource_version
        self.fail_next: list[Exception] = []
        self.list_calls: list[dict[str, Any]] = []

    async def list_endpoints_for_all_namespaces(self, **kwargs: Any) -> SimpleNamespace:
        self.list_calls.append(kwargs)
        if self.fail_next:
            raise self.fail_next.pop(0)
        limit = kwargs.get("limit") or len(self.objects) or 1
        start = int(kwargs.get("_continue") or 0)
        page = self.objects[start : start + limit]
        end = start + limit
        token = str(end) if end < len(self.objects) else None
        return SimpleNamespace(
            items=page,
            metadata=SimpleNamespace(resource_version=self.resource_version, _continue=token),
        )


class FakeWatch:
    """Replays scripted batches of watch events, one batch per ``stream()`` call.

    A batch may be an exception instance, which is raised when the stream is
    entered.  Once the script is exhausted ``on_exhausted`` is awaited, which
    lets tests block the watcher until they are done asserting.
    """

    def __init__(self, script: list[list[dict[str, Any]] | Exception], on_exhausted: Any = None) -> None:
        self.script = script
        self.on_exhausted = on_exhausted
        self.calls: list[dict[str, Any]] = []

    def __call__(self) -> FakeWatch:
        return self

    def stream(self, func: Any, **kwargs: Any) -> _FakeStream:
        self.calls.append(kwargs)
        batch = self.script.pop(0) if self.script else None
        return _FakeStream(batch, self.on_exhausted)


class _FakeStream:
    def __init__(self, batch: list[dict[str, Any]] | Exception | None, on_exhausted: Any) -> None:
        self._batch = batch
        self._on_exhausted = on_exhausted

    async def __aenter__(self) -> AsyncIterator[dict[str, Any]]:
        if isinstance(self._batch, Exception):
            raise self._batch
        return self._events()

    async def __aexit__(self, *exc: object) -> None:
        return None

    async def _events(self) -> AsyncIterator[dict[str, Any]]:
        if self._batch is None:
            if self._on_exhausted is not None:
                await self._on_exhausted()
            return
        for event in self._batch:
            yield event


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_v1() -> FakeCoreV1Api:
    return FakeCoreV1Api(
        [
            make_endpoints("kubernetes", "default", rv="10", ips=("192.168.0.1",), port=6443),
            make_endpoints("kube-dns", "kube-system", rv="11", ips=("10.244.0.2", "10.244.0.3"), port=53),
            make_endpoints("web", "shop", rv="12"),
        ]
    )
