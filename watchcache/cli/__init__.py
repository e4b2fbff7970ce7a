"""watchcache-exporter command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``watchcache-exporter`` script).
"""

from watchcache.cli.main import cli

__all__ = ["cli"]
