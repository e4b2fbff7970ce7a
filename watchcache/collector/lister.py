"""Direct (uncached) Endpoints listing against the API server.

Lists are paged with ``limit``/``continue`` so large clusters never need one
giant response.  Every failure surfaces as ``AuthoritySourceError``; the
reconciler treats that as "skip this tick".
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from watchcache.errors import AuthoritySourceError
from watchcache.models.resources import ResourceRecord, Snapshot, SnapshotSource

_log = structlog.get_logger(component="collector.lister")

DEFAULT_PAGE_SIZE = 500

Serializer = Callable[[Any], dict[str, Any]]


def to_raw(item: Any, serialize: Serializer | None) -> dict[str, Any]:
    if isinstance(item, dict):
        return item
    if serialize is None:
        raise TypeError(f"cannot serialise {type(item).__name__} without an ApiClient")
    return serialize(item)


async def list_all_endpoints(
    v1: Any,
    serialize: Serializer | None = None,
    request_timeout: float | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    resource_version: str | None = None,
) -> tuple[list[ResourceRecord], str]:
    """List Endpoints across all namespaces, following continue tokens.

    Without *resource_version* the API server answers with a quorum read from
    etcd.  ``"0"`` lets it serve the list from its watch cache instead.

    Returns the records and the list's resourceVersion.  Errors propagate
    unchanged; callers decide how to wrap them.
    """
    records: list[ResourceRecord] = []
    list_version = ""
    token: str | None = None
    while True:
        kwargs: dict[str, Any] = {"limit": page_size}
        if resource_version is not None:
            kwargs["resource_version"] = resource_version
        if token:
            kwargs["_continue"] = token
        if request_timeout:
            kwargs["_request_timeout"] = request_timeout
        page = await v1.list_endpoints_for_all_namespaces(**kwargs)
        records.extend(ResourceRecord.from_raw(to_raw(item, serialize)) for item in page.items or [])
        metadata = page.metadata
        list_version = str(getattr(metadata, "resource_version", "") or "")
        token = getattr(metadata, "_continue", None)
        if not token:
            return records, list_version


class EndpointsLister:
    """Authoritative lister: every call performs a fresh list, never served from a cache."""

    def __init__(
        self,
        v1: Any,
        api_client: Any = None,
        request_timeout: float | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._v1 = v1
        self._serialize: Serializer | None = api_client.sanitize_for_serialization if api_client is not None else None
        self._request_timeout = request_timeout
        self._page_size = page_size

    async def list(self) -> Snapshot:
        """Return a snapshot of every Endpoints object straight from the API server.

        Raises:
            AuthoritySourceError: the API call failed for any reason.
        """
        # No resource_version: must be a quorum read from etcd, never the watch cache.
        try:
            records, resource_version = await list_all_endpoints(
                self._v1,
                serialize=self._serialize,
                request_timeout=self._request_timeout,
                page_size=self._page_size,
            )
        except ApiException as exc:
            raise AuthoritySourceError(f"list endpoints failed: {exc.status} {exc.reason}", status=exc.status) from exc
        except Exception as exc:
            raise AuthoritySourceError(f"list endpoints failed: {exc}") from exc

        _log.debug("listed endpoints", count=len(records), resource_version=resource_version)
        return Snapshot(records, SnapshotSource.DIRECT)
