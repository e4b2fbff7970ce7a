"""Command-line interface for watchcache-exporter.

Commands:
    run      -- Start the exporter (metrics endpoint + reconciliation loop).
    check    -- Run a single reconciliation tick and print the result as JSON.
    version  -- Print the version.

Flags override the matching WATCHCACHE_* environment variables.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from watchcache.config import apply_overrides, load_config
from watchcache.errors import ConfigError
from watchcache.models.config import WatchcacheConfig
from watchcache.models.resources import TickOutcome

_EXIT_CLEAN = 0
_EXIT_DISCREPANCIES = 1
_EXIT_NOT_CHECKED = 2

_LOG_LEVELS = click.Choice(["debug", "info", "warning", "error"], case_sensitive=False)


def _build_config(**overrides: object) -> WatchcacheConfig:
    try:
        return apply_overrides(load_config(), **overrides)  # type: ignore[arg-type]
    except ConfigError as exc:
        raise click.BadParameter(str(exc)) from exc


def _kube_options(fn):  # type: ignore[no-untyped-def]
    fn = click.option("--context", "context", default=None, help="Use context.")(fn)
    fn = click.option("--kubeconfig", "kubeconfig", default=None, help="Use explicit kubeconfig file.")(fn)
    return fn


@click.group()
def cli() -> None:
    """Verify that the API server's endpoints watch cache matches etcd."""


@cli.command()
@click.option(
    "--listen-address",
    default=None,
    help="The address to listen on for HTTP requests.  [default: :9102]",
)
@_kube_options
@click.option(
    "--interval",
    type=click.FloatRange(min=1.0),
    default=None,
    help="Seconds between reconciliation ticks.  [default: 300]",
)
@click.option("--log-level", type=_LOG_LEVELS, default=None, help="Log level.  [default: info]")
def run(
    listen_address: str | None,
    kubeconfig: str | None,
    context: str | None,
    interval: float | None,
    log_level: str | None,
) -> None:
    """Serve /metrics and reconcile the endpoints cache on a fixed interval."""
    from watchcache.app import main

    config = _build_config(
        listen_address=listen_address,
        kubeconfig=kubeconfig,
        context=context,
        interval=interval,
        log_level=log_level,
    )
    asyncio.run(main(config))


@cli.command()
@_kube_options
@click.option("--log-level", type=_LOG_LEVELS, default="warning", show_default=True, help="Log level.")
def check(kubeconfig: str | None, context: str | None, log_level: str) -> None:
    """Run one reconciliation tick and print the result as JSON.

    Exit status: 0 clean, 1 discrepancies found, 2 tick failed or degenerate.
    """
    from watchcache.app import check_once
    from watchcache.observability.logging import setup_logging

    config = _build_config(kubeconfig=kubeconfig, context=context, log_level=log_level)
    setup_logging(config.log.level)
    try:
        result = asyncio.run(check_once(config))
    except Exception as exc:
        click.echo(f"error: {exc}", err=True)
        sys.exit(_EXIT_NOT_CHECKED)

    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.outcome is TickOutcome.CLEAN:
        sys.exit(_EXIT_CLEAN)
    if result.outcome is TickOutcome.DISCREPANCIES:
        sys.exit(_EXIT_DISCREPANCIES)
    sys.exit(_EXIT_NOT_CHECKED)


@cli.command()
def version() -> None:
    """Print the watchcache-exporter version."""
    from watchcache import __version__

    click.echo(__version__)
