"""Reconciliation engine for watchcache-exporter.

Submodules:
    diff   -- Count-based classification of discrepancies and label rendering.
    engine -- Reconciler: fixed-interval tick loop reporting to the MetricsSink.
"""

from watchcache.reconciler.diff import classify
from watchcache.reconciler.engine import Reconciler

__all__ = ["Reconciler", "classify"]
