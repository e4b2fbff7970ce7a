"""Prometheus metrics for watchcache-exporter.

All collectors live on a ``CollectorRegistry`` owned by a ``MetricsSink``
instance.  The sink is created once at startup and handed to every component
that reports; nothing registers on the prometheus_client default registry.

Counter families (names kept stable for existing dashboards):
    watchcache_endpoint_disparity_total{namespace,name,endpoint}
    watchcache_endpoint_missing_total{namespace,name,endpoint}
    watchcache_endpoint_tests_total
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from watchcache.models.resources import DiscrepancyCategory, DiscrepancyEvent, TickResult

LABELS = ("namespace", "name", "endpoint")

_TICK_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)


class MetricsSink:
    """Thread-safe counter sink backed by prometheus_client.

    prometheus_client collectors use atomic value updates, so increments from
    the reconciliation loop and reads from the ``/metrics`` handler can run
    concurrently.  Label values are accepted verbatim; ``endpoint`` embeds
    per-record payload text and therefore has unbounded cardinality.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self.disparity_total = Counter(
            "watchcache_endpoint_disparity",
            "Export disparities in endpoints between API watch cache and etcd store.",
            LABELS,
            registry=self.registry,
        )
        self.missing_total = Counter(
            "watchcache_endpoint_missing",
            "Export missing endpoints between API watch cache and etcd store.",
            LABELS,
            registry=self.registry,
        )
        self.tests_total = Counter(
            "watchcache_endpoint_tests",
            "Watchcache tests in total",
            registry=self.registry,
        )
        self.ticks_total = Counter(
            "watchcache_reconcile_ticks",
            "Reconciliation ticks by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.tick_duration_seconds = Histogram(
            "watchcache_reconcile_duration_seconds",
            "Wall-clock duration of one reconciliation tick.",
            buckets=_TICK_BUCKETS,
            registry=self.registry,
        )
        self.cache_ready = Gauge(
            "watchcache_cache_ready",
            "1 once the endpoints cache finished its initial sync.",
            registry=self.registry,
        )
        self.cache_size = Gauge(
            "watchcache_cache_size",
            "Number of endpoints held in the local cache.",
            registry=self.registry,
        )
        self.watch_restarts_total = Counter(
            "watchcache_watch_restarts",
            "Endpoints watch stream restarts by reason.",
            ["reason"],
            registry=self.registry,
        )

    # ------------------------------------------------------------------
    # Discrepancy counters
    # ------------------------------------------------------------------

    def increment_disparity(self, namespace: str, name: str, detail: str) -> None:
        self.disparity_total.labels(namespace=namespace, name=name, endpoint=detail).inc()

    def increment_missing(self, namespace: str, name: str, detail: str) -> None:
        self.missing_total.labels(namespace=namespace, name=name, endpoint=detail).inc()

    def increment_tick_counter(self) -> None:
        self.tests_total.inc()

    def record_event(self, event: DiscrepancyEvent) -> None:
        """Route *event* to its counter family.

        Both directions of "missing" share one family; only logs tell them apart.
        """
        if event.category is DiscrepancyCategory.VERSION_MISMATCH:
            self.increment_disparity(event.namespace, event.name, event.detail)
        else:
            self.increment_missing(event.namespace, event.name, event.detail)

    # ------------------------------------------------------------------
    # Loop and cache health
    # ------------------------------------------------------------------

    def observe_tick(self, result: TickResult) -> None:
        self.ticks_total.labels(outcome=result.outcome.value).inc()
        self.tick_duration_seconds.observe(result.duration_seconds)

    def set_cache_ready(self, ready: bool) -> None:
        self.cache_ready.set(1 if ready else 0)

    def set_cache_size(self, size: int) -> None:
        self.cache_size.set(size)

    def increment_watch_restart(self, reason: str) -> None:
        self.watch_restarts_total.labels(reason=reason).inc()

    # ------------------------------------------------------------------
    # Exposition
    # ------------------------------------------------------------------

    def render(self) -> tuple[bytes, str]:
        """Return the text exposition payload and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST

    def sample(self, metric: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a single sample, 0.0 when it was never set."""
        value = self.registry.get_sample_value(metric, labels or {})
        return value if value is not None else 0.0
