"""Observability for watchcache-exporter.

Submodules:
    logging -- structlog JSON configuration and component-bound loggers.
    metrics -- MetricsSink: prometheus_client counters on an owned registry.
"""
