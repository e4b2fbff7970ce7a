"""Configuration loading from environment variables and CLI overrides."""

from __future__ import annotations

import math
import os
import re
from dataclasses import replace

from watchcache.errors import ConfigError
from watchcache.models.config import (
    KubeConfig,
    LogConfig,
    MetricsConfig,
    ReconcilerConfig,
    WatchcacheConfig,
    WatcherConfig,
)

_LISTEN_ADDRESS = re.compile(r"^(\[[0-9a-fA-F:]+\]|[A-Za-z0-9.\-]*):([0-9]{1,5})$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"WATCHCACHE_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = _env(key, str(default))
    try:
        val = int(raw)
    except ValueError as exc:
        raise ConfigError(f"WATCHCACHE_{key} must be an integer, got {raw!r}") from exc
    return _clamp(val, min_val, max_val)


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    raw = _env(key, str(default))
    try:
        val = float(raw)
    except ValueError as exc:
        raise ConfigError(f"WATCHCACHE_{key} must be a number, got {raw!r}") from exc
    if not math.isfinite(val):
        raise ConfigError(f"WATCHCACHE_{key} must be a finite number, got {raw!r}")
    return _clamp(val, min_val, max_val)


def _clamp(val, min_val, max_val):  # type: ignore[no-untyped-def]
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ConfigError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_listen_address(value: str) -> str:
    match = _LISTEN_ADDRESS.match(value)
    if not match or not 0 < int(match.group(2)) <= 65535:
        raise ConfigError(f"Invalid listen address: {value!r}. Expected [host]:port")
    return value


def load_config() -> WatchcacheConfig:
    """Load configuration from WATCHCACHE_* environment variables."""
    return WatchcacheConfig(
        kube=KubeConfig(
            kubeconfig=_env("KUBECONFIG", ""),
            context=_env("CONTEXT", ""),
            request_timeout=_env_int("REQUEST_TIMEOUT", 60, min_val=1, max_val=600),
        ),
        reconciler=ReconcilerConfig(
            interval_seconds=_env_float("INTERVAL_SECONDS", 300.0, min_val=1.0, max_val=86400.0),
            cache_sync_timeout=_env_int("CACHE_SYNC_TIMEOUT", 300, min_val=1),
            max_label_length=_env_int("MAX_LABEL_LENGTH", 0, min_val=0),
        ),
        watcher=WatcherConfig(
            watch_timeout=_env_int("WATCH_TIMEOUT", 300, min_val=10, max_val=3600),
        ),
        metrics=MetricsConfig(
            listen_address=_validate_listen_address(_env("LISTEN_ADDRESS", ":9102")),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )


def apply_overrides(
    config: WatchcacheConfig,
    *,
    listen_address: str | None = None,
    kubeconfig: str | None = None,
    context: str | None = None,
    interval: float | None = None,
    log_level: str | None = None,
) -> WatchcacheConfig:
    """Return a copy of *config* with explicitly given CLI flags applied.

    ``None`` means "flag not given"; the environment value is kept.
    """
    kube = config.kube
    if kubeconfig is not None:
        kube = replace(kube, kubeconfig=kubeconfig)
    if context is not None:
        kube = replace(kube, context=context)

    reconciler = config.reconciler
    if interval is not None:
        if not math.isfinite(interval) or interval <= 0:
            raise ConfigError(f"Invalid interval: {interval}. Must be positive")
        reconciler = replace(reconciler, interval_seconds=float(interval))

    metrics = config.metrics
    if listen_address is not None:
        metrics = replace(metrics, listen_address=_validate_listen_address(listen_address))

    log = config.log
    if log_level is not None:
        log = replace(log, level=_validate_log_level(log_level))

    return replace(config, kube=kube, reconciler=reconciler, metrics=metrics, log=log)
