"""Exception taxonomy for watchcache-exporter.

Only ``ConfigError`` and ``CacheSyncTimeoutError`` end the process; every
other error is logged and the reconciliation loop carries on at its fixed
interval.
"""

from __future__ import annotations


class WatchcacheError(Exception):
    """Base class for all watchcache-exporter errors."""


class ConfigError(WatchcacheError):
    """An environment variable or CLI flag has an invalid value."""


class AuthoritySourceError(WatchcacheError):
    """The direct list call against the API server failed.

    The current tick is skipped; the next tick retries.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientLookupError(WatchcacheError):
    """A single-record cache lookup failed; only that record is skipped."""


class DegenerateSnapshotError(WatchcacheError):
    """One of the two snapshots is empty; the tick is skipped."""

    def __init__(self, direct_count: int, cached_count: int) -> None:
        super().__init__(f"empty endpoint list (direct={direct_count}, cached={cached_count})")
        self.direct_count = direct_count
        self.cached_count = cached_count


class CacheSyncTimeoutError(WatchcacheError):
    """The endpoints cache did not finish its initial sync in time."""


class WatchExpiredError(WatchcacheError):
    """The watch resourceVersion is too old (HTTP 410); a relist is required."""


class WatchStreamError(WatchcacheError):
    """The API server sent a watch ERROR event other than 410."""
