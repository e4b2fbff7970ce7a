"""Endpoint record, snapshot and discrepancy data structures."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class SnapshotSource(StrEnum):
    """Where a snapshot was captured from."""

    DIRECT = "direct"
    CACHED = "cached"


class DiscrepancyCategory(StrEnum):
    """Classification of a single cache/authority discrepancy."""

    VERSION_MISMATCH = "version_mismatch"
    MISSING_IN_CACHE = "missing_in_cache"
    MISSING_IN_AUTHORITY = "missing_in_authority"


class TickOutcome(StrEnum):
    """Result of one reconciliation tick."""

    CLEAN = "clean"
    DISCREPANCIES = "discrepancies"
    DEGENERATE = "degenerate"
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceRecord:
    """One Endpoints object as seen by either the API server or the cache.

    ``subsets`` is kept opaque: it is only compared through ``resource_version``
    and rendered into metric labels.
    """

    namespace: str
    name: str
    resource_version: str
    subsets: list[dict[str, Any]] = field(default_factory=list, hash=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ResourceRecord:
        """Build a record from a serialised Kubernetes Endpoints dict."""
        metadata = raw.get("metadata") or {}
        return cls(
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata.get("name") or ""),
            resource_version=str(metadata.get("resourceVersion") or ""),
            subsets=list(raw.get("subsets") or []),
        )


class Snapshot:
    """Immutable collection of records captured at one instant.

    Identity keys are unique within a snapshot; if the source yields the same
    key twice the later record wins and the key is reported in ``duplicates``.
    """

    __slots__ = ("_records", "_index", "source", "duplicates")

    def __init__(self, records: Iterable[ResourceRecord], source: SnapshotSource) -> None:
        index: dict[tuple[str, str], ResourceRecord] = {}
        duplicates: list[tuple[str, str]] = []
        for record in records:
            if record.key in index:
                duplicates.append(record.key)
            index[record.key] = record
        self._index = index
        self._records = tuple(index.values())
        self.source = source
        self.duplicates = tuple(duplicates)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ResourceRecord]:
        return iter(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def __repr__(self) -> str:
        return f"Snapshot(source={self.source.value!r}, count={len(self._records)})"

    def get(self, namespace: str, name: str) -> ResourceRecord | None:
        return self._index.get((namespace, name))

    def keys(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._index)


@dataclass(frozen=True)
class DiscrepancyEvent:
    """A single classified difference between the two snapshots.

    Produced by the classifier and immediately turned into a counter increment.
    ``detail`` is only ever used as the ``endpoint`` label value.
    """

    namespace: str
    name: str
    category: DiscrepancyCategory
    detail: str


@dataclass(frozen=True)
class TickResult:
    """Summary of one reconciliation tick, kept for health reporting."""

    outcome: TickOutcome
    started_at: datetime
    duration_seconds: float = 0.0
    direct_count: int = 0
    cached_count: int = 0
    events: tuple[DiscrepancyEvent, ...] = ()
    error: str = ""

    def counts_by_category(self) -> dict[str, int]:
        counts = {category.value: 0 for category in DiscrepancyCategory}
        for event in self.events:
            counts[event.category.value] += 1
        return counts

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 6),
            "direct_count": self.direct_count,
            "cached_count": self.cached_count,
            "discrepancies": self.counts_by_category(),
            "events": [
                {
                    "namespace": e.namespace,
                    "name": e.name,
                    "category": e.category.value,
                    "detail": e.detail,
                }
                for e in self.events
            ],
            "error": self.error,
        }
