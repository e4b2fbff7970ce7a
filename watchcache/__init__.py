"""watchcache-exporter: Kubernetes endpoints watch-cache consistency checker."""

__version__ = "0.3.0"
