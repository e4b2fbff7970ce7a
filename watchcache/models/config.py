"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KubeConfig:
    """Kubernetes client configuration."""

    kubeconfig: str = ""
    context: str = ""
    request_timeout: int = 60


@dataclass
class ReconcilerConfig:
    """Reconciliation loop configuration."""

    interval_seconds: float = 300.0
    cache_sync_timeout: int = 300
    max_label_length: int = 0


@dataclass
class WatcherConfig:
    """Endpoints watch-stream configuration."""

    watch_timeout: int = 300


@dataclass
class MetricsConfig:
    """Metrics HTTP endpoint configuration."""

    listen_address: str = ":9102"

    @property
    def host(self) -> str:
        host, _, _ = self.listen_address.rpartition(":")
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.listen_address.rpartition(":")
        return int(port)


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class WatchcacheConfig:
    """Top-level watchcache-exporter configuration."""

    kube: KubeConfig = field(default_factory=KubeConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
