"""HTTP surface for watchcache-exporter: Prometheus scrape and health endpoints."""

from watchcache.api.app import create_app

__all__ = ["create_app"]
