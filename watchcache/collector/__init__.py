"""Collector package for watchcache-exporter.

Talks to the Kubernetes API server on behalf of the reconciler.

Submodules
----------
lister            -- EndpointsLister: paged direct list, the authoritative view.
endpoints_watcher -- EndpointsWatcher: list-then-watch loop feeding the cache,
                     with 410 relist recovery and back-off.
"""

from watchcache.collector.endpoints_watcher import EndpointsWatcher
from watchcache.collector.lister import EndpointsLister

__all__ = ["EndpointsLister", "EndpointsWatcher"]
