"""Discrepancy classification between the direct and cached snapshots.

The branch is chosen from the snapshot sizes alone:

    len(direct) == len(cached)  -> resourceVersion disparity check
    len(direct) >  len(cached)  -> records missing in the cache
    len(direct) <  len(cached)  -> records missing in the authoritative store

Only one branch runs per tick.  A tick where the cache lost one record and
the API server gained another (same total) therefore surfaces through the
disparity path only; the records that differ in identity are skipped there.

Everything in this module is pure: the same inputs always produce the same
events.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Iterator
from typing import Any

import structlog

from watchcache.errors import TransientLookupError
from watchcache.models.resources import (
    DiscrepancyCategory,
    DiscrepancyEvent,
    ResourceRecord,
    Snapshot,
)

_log = structlog.get_logger(component="reconciler.diff")

Lookup = Callable[[str, str], ResourceRecord | None]

_MISSING = object()
_HASH_CHARS = 12


# ---------------------------------------------------------------------------
# Payload rendering
# ---------------------------------------------------------------------------


def render_subsets(subsets: list[dict[str, Any]]) -> str:
    """Canonical compact JSON for an Endpoints ``subsets`` payload."""
    return json.dumps(subsets, sort_keys=True, separators=(",", ":"), default=str)


def _render_value(value: object) -> str:
    if value is _MISSING:
        return "<absent>"
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _walk(old: object, new: object, path: str) -> Iterator[tuple[str, object, object]]:
    """Yield ``(path, old, new)`` for every leaf that differs."""
    if isinstance(old, dict) and isinstance(new, dict):
        for key in sorted(set(old) | set(new), key=str):
            child = f"{path}.{key}" if path else str(key)
            yield from _walk(old.get(key, _MISSING), new.get(key, _MISSING), child)
        return
    if isinstance(old, list) and isinstance(new, list):
        for i in range(max(len(old), len(new))):
            o = old[i] if i < len(old) else _MISSING
            n = new[i] if i < len(new) else _MISSING
            yield from _walk(o, n, f"{path}[{i}]")
        return
    if old != new:
        yield path or "$", old, new


def diff_subsets(direct: list[dict[str, Any]], cached: list[dict[str, Any]]) -> str:
    """Structural diff of two ``subsets`` payloads.

    Each differing leaf renders as ``path: direct -> cached`` using
    JSONPath-style paths (``[0].addresses[1].ip``); entries are joined with
    ``"; "``.  Identical payloads render as the empty string.
    """
    return "; ".join(
        f"{path}: {_render_value(old)} -> {_render_value(new)}" for path, old, new in _walk(direct, cached, "")
    )


def cap_label(detail: str, max_length: int) -> str:
    """Bound a label value to *max_length* characters.

    Over-long values keep a prefix and gain a short sha256 suffix so distinct
    payloads still map to distinct series.  ``max_length <= 0`` disables the cap.
    """
    if max_length <= 0 or len(detail) <= max_length:
        return detail
    digest = hashlib.sha256(detail.encode("utf-8")).hexdigest()[:_HASH_CHARS]
    suffix = f"...sha256:{digest}"
    keep = max(max_length - len(suffix), 0)
    return detail[:keep] + suffix


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _safe_lookup(lookup: Lookup, record: ResourceRecord) -> tuple[ResourceRecord | None, str]:
    try:
        return lookup(record.namespace, record.name), ""
    except TransientLookupError as exc:
        return None, str(exc)


def check_disparity(direct: Snapshot, lookup: Lookup) -> list[DiscrepancyEvent]:
    """Report records whose resourceVersion differs between the two views.

    Records absent from the cache, or whose lookup fails, are skipped.
    Records present only in the cache are never inspected.
    """
    events: list[DiscrepancyEvent] = []
    for record in direct:
        cached, error = _safe_lookup(lookup, record)
        if cached is None:
            _log.warning(
                "could not get endpoint from cache",
                namespace=record.namespace,
                name=record.name,
                error=error or "not found",
            )
            continue
        if record.resource_version == cached.resource_version:
            continue
        _log.debug(
            "endpoint resourceVersion differs",
            namespace=record.namespace,
            name=record.name,
            direct_version=record.resource_version,
            cached_version=cached.resource_version,
        )
        events.append(
            DiscrepancyEvent(
                namespace=record.namespace,
                name=record.name,
                category=DiscrepancyCategory.VERSION_MISMATCH,
                detail=diff_subsets(record.subsets, cached.subsets),
            )
        )
    return events


def check_missing_in_cache(direct: Snapshot, lookup: Lookup) -> list[DiscrepancyEvent]:
    """Report every direct record that the cache cannot produce."""
    events: list[DiscrepancyEvent] = []
    for record in direct:
        cached, error = _safe_lookup(lookup, record)
        if cached is not None:
            continue
        _log.warning(
            "endpoint missing in cache",
            namespace=record.namespace,
            name=record.name,
            error=error,
        )
        events.append(
            DiscrepancyEvent(
                namespace=record.namespace,
                name=record.name,
                category=DiscrepancyCategory.MISSING_IN_CACHE,
                detail=render_subsets(record.subsets),
            )
        )
    return events


def check_missing_in_authority(direct: Snapshot, cached: Snapshot) -> list[DiscrepancyEvent]:
    """Report every cached record that the direct list does not contain."""
    events: list[DiscrepancyEvent] = []
    for record in cached:
        found = False
        for candidate in direct:
            if candidate.namespace == record.namespace and candidate.name == record.name:
                found = True
                break
        if found:
            continue
        _log.warning(
            "endpoint missing in etcd",
            namespace=record.namespace,
            name=record.name,
        )
        events.append(
            DiscrepancyEvent(
                namespace=record.namespace,
                name=record.name,
                category=DiscrepancyCategory.MISSING_IN_AUTHORITY,
                detail=render_subsets(record.subsets),
            )
        )
    return events


def classify(direct: Snapshot, cached: Snapshot, lookup: Lookup | None = None) -> list[DiscrepancyEvent]:
    """Run exactly one check, chosen by comparing snapshot sizes.

    Args:
        direct: Snapshot listed from the API server.
        cached: Snapshot enumerated from the local cache.
        lookup: Point lookup into the cache.  Defaults to ``cached.get`` which
            keeps classification pure; the reconciler passes the live store's
            ``get_by_key`` instead.

    Both snapshots are expected to be non-empty; the caller guards that.
    """
    if lookup is None:
        lookup = cached.get

    if len(direct) == len(cached):
        return check_disparity(direct, lookup)

    _log.debug("endpoint count differs", direct=len(direct), cached=len(cached))
    if len(direct) > len(cached):
        return check_missing_in_cache(direct, lookup)
    return check_missing_in_authority(direct, cached)
