"""Core data structures for watchcache-exporter."""

from watchcache.models.config import WatchcacheConfig
from watchcache.models.resources import (
    DiscrepancyCategory,
    DiscrepancyEvent,
    ResourceRecord,
    Snapshot,
    SnapshotSource,
    TickOutcome,
    TickResult,
)

__all__ = [
    "DiscrepancyCategory",
    "DiscrepancyEvent",
    "ResourceRecord",
    "Snapshot",
    "SnapshotSource",
    "TickOutcome",
    "TickResult",
    "WatchcacheConfig",
]
