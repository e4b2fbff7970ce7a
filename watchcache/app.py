"""Application bootstrap for watchcache-exporter.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> K8s client -> metrics sink -> REST
              -> cache + watcher -> cache sync -> reconciler

Shutdown runs in reverse order.  The reconciler is asked to stop and given a
grace period to reach its next sleep boundary before it is cancelled.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from watchcache.config import load_config
from watchcache.errors import CacheSyncTimeoutError, ConfigError
from watchcache.models.config import KubeConfig, WatchcacheConfig
from watchcache.models.resources import TickResult
from watchcache.observability.logging import get_logger, setup_logging
from watchcache.observability.metrics import MetricsSink

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


async def load_kube_client(kube: KubeConfig) -> Any:
    """Build a kubernetes-asyncio ApiClient.

    An explicit kubeconfig path or context always wins; otherwise the
    in-cluster service account is tried before the default kubeconfig.
    """
    import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

    log = get_logger("app")
    if kube.kubeconfig or kube.context:
        await k8s_config.load_kube_config(
            config_file=kube.kubeconfig or None,
            context=kube.context or None,
        )
        log.info("k8s client configured from kubeconfig", path=kube.kubeconfig, context=kube.context)
    else:
        try:
            k8s_config.load_incluster_config()
            log.info("k8s client configured from in-cluster service account")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config()
            log.info("k8s client configured from kubeconfig")
    return k8s_client.ApiClient()


class WatchcacheApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: WatchcacheConfig | None = None) -> None:
        self.config = config

        self._api_client: Any = None
        self._v1: Any = None
        self.sink: MetricsSink | None = None
        self.cache: Any = None
        self._watcher: Any = None
        self.reconciler: Any = None
        self._rest_server: Any = None
        self._fastapi_app: Any = None

        self._background_tasks: list[asyncio.Task[None]] = []
        self._reconciler_task: asyncio.Task[None] | None = None

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            try:
                self.config = load_config()
            except ConfigError as exc:
                raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("watchcache-exporter starting", version=_watchcache_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Metrics sink ---------------------------------------------
        self.sink = MetricsSink()

        # --- 5. Metrics endpoint -----------------------------------------
        await self._start_rest()

        # --- 6. Endpoints cache and watcher -------------------------------
        await self._start_cache()

        # --- 7. Wait for initial cache sync -------------------------------
        await self._wait_for_cache_sync()

        # --- 8. Reconciler ------------------------------------------------
        await self._start_reconciler()

        self._running = True
        self._log.info("watchcache-exporter started", listen_address=self.config.metrics.listen_address)

    async def _start_k8s_client(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            self._api_client = await load_kube_client(self.config.kube)
            self._v1 = k8s_client.CoreV1Api(self._api_client)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn server exposing /metrics and /healthz."""
        assert self._log is not None
        assert self.config is not None
        assert self.sink is not None
        self._log.debug("starting metrics endpoint")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from watchcache.api import create_app

            # The app reads cache/reconciler from app.state, filled in once they exist.
            fastapi_app = create_app(sink=self.sink)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.metrics.host,
                port=self.config.metrics.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="metrics-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._fastapi_app = fastapi_app
            self._log.info("starting prometheus metrics", listen_address=self.config.metrics.listen_address)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def _start_cache(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.sink is not None
        self._log.debug("starting endpoints cache")
        try:
            from watchcache.cache import EndpointsCache
            from watchcache.collector import EndpointsWatcher

            self.cache = EndpointsCache(on_change=self.sink.set_cache_size)
            self._watcher = EndpointsWatcher(
                self._v1,
                self.cache,
                api_client=self._api_client,
                sink=self.sink,
                watch_timeout=self.config.watcher.watch_timeout,
                request_timeout=self.config.kube.request_timeout,
            )
            await self._watcher.start()
            self._fastapi_app.state.cache = self.cache
            self._log.info("starting informer")
        except Exception as exc:
            raise _ComponentError("cache", exc) from exc

    async def _wait_for_cache_sync(self) -> None:
        assert self._log is not None
        assert self.config is not None
        timeout = self.config.reconciler.cache_sync_timeout
        if not await self.cache.wait_until_ready(timeout=timeout):
            raise _ComponentError(
                "cache_sync",
                CacheSyncTimeoutError(f"endpoints cache not synced after {timeout}s"),
            )

    async def _start_reconciler(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.sink is not None
        try:
            from watchcache.collector import EndpointsLister
            from watchcache.reconciler import Reconciler

            lister = EndpointsLister(
                self._v1,
                api_client=self._api_client,
                request_timeout=self.config.kube.request_timeout,
            )
            self.reconciler = Reconciler(
                lister,
                self.cache,
                self.sink,
                interval_seconds=self.config.reconciler.interval_seconds,
                max_label_length=self.config.reconciler.max_label_length,
            )
            self._fastapi_app.state.reconciler = self.reconciler
            self._reconciler_task = asyncio.create_task(self.reconciler.run(), name="reconciler")
        except Exception as exc:
            raise _ComponentError("reconciler", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("watchcache-exporter shutting down")
        self._running = False

        await self._stop_reconciler()
        await self._stop_component("watcher", self._watcher)

        if self._rest_server is not None:
            self._rest_server.should_exit = True
        for task in reversed(self._background_tasks):
            if not task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=_SHUTDOWN_GRACE_SECONDS)
                except TimeoutError:
                    task.cancel()
                except Exception as exc:
                    log.debug("background task ended with error", task=task.get_name(), error=str(exc))
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_k8s_client()
        log.info("watchcache-exporter stopped")

    async def _stop_reconciler(self) -> None:
        task = self._reconciler_task
        if task is None:
            return
        log = self._log or get_logger("app")
        self.reconciler.stop()
        try:
            await asyncio.wait_for(task, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("reconciler stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            log.error("reconciler ended with an error", error=str(exc))
        self._reconciler_task = None

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None


def _watchcache_version() -> str:
    from watchcache import __version__

    return __version__


# ---------------------------------------------------------------------------
# One-shot check
# ---------------------------------------------------------------------------


async def check_once(config: WatchcacheConfig) -> TickResult:
    """Populate a cache with one list, then run a single reconciliation tick.

    Used by ``watchcache-exporter check``.  No watch is started, so the tick
    compares the API server's watch-cache list with a quorum list taken
    moments later.
    """
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

    from watchcache.cache import EndpointsCache
    from watchcache.collector import EndpointsLister, EndpointsWatcher
    from watchcache.reconciler import Reconciler

    api_client = await load_kube_client(config.kube)
    try:
        v1 = k8s_client.CoreV1Api(api_client)
        sink = MetricsSink()
        cache = EndpointsCache(on_change=sink.set_cache_size)
        watcher = EndpointsWatcher(
            v1,
            cache,
            api_client=api_client,
            sink=sink,
            request_timeout=config.kube.request_timeout,
        )
        await watcher.relist()
        lister = EndpointsLister(v1, api_client=api_client, request_timeout=config.kube.request_timeout)
        reconciler = Reconciler(lister, cache, sink, max_label_length=config.reconciler.max_label_length)
        return await reconciler.run_once()
    finally:
        await api_client.close()


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: WatchcacheConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = WatchcacheApp(config)
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def _request_shutdown(sig: signal.Signals) -> None:
        if shutdown.is_set():
            return
        get_logger("app").warning("signal detected, shutting down", signal=sig.name)
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown, sig)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
