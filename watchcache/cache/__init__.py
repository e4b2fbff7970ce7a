"""Cache layer for watchcache-exporter.

Provides the in-memory Endpoints mirror that the watch stream keeps current
and the reconciler audits.

Submodules:
    endpoints_cache -- Lock-protected indexed store with a one-shot readiness gate.
"""

from watchcache.cache.endpoints_cache import EndpointsCache

__all__ = ["EndpointsCache"]
