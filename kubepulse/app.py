"""Application bootstrap for kubepulse.

Wires components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → incident engine
              → pod index → REST

Shutdown stops components in reverse startup order.  Each component's
stop error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from kubepulse.config import load_config
from kubepulse.models.config import KubePulseConfig
from kubepulse.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubepulse.cluster.reader import KubernetesClusterReader
    from kubepulse.incident.aggregator import IncidentAggregator
    from kubepulse.incident.timeline import RolloutTimelineBuilder
    from kubepulse.index.pod_index import PodIndexSupervisor
    from kubepulse.ownership.resolver import GenerationIndex

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubePulseApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self) -> None:
        self.config: KubePulseConfig | None = None

        self._api_client: Any | None = None
        self._reader: KubernetesClusterReader | None = None
        self._aggregator: IncidentAggregator | None = None
        self._timeline_builder: RolloutTimelineBuilder | None = None
        self._pod_supervisor: PodIndexSupervisor | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("kubepulse starting", version=_kubepulse_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Incident engine -------------------------------------------
        await self._start_engine()

        # --- 5. Live pod index -------------------------------------------
        await self._start_pod_index()

        # --- 6. REST API -------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubepulse started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_engine(self) -> None:
        """Build the cluster reader, incident aggregator and rollout timeline builder."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting incident engine")
        try:
            from kubepulse.cluster.reader import KubernetesClusterReader
            from kubepulse.incident.aggregator import IncidentAggregator
            from kubepulse.incident.timeline import RolloutTimelineBuilder

            self._reader = KubernetesClusterReader(self._api_client)
            self._aggregator = IncidentAggregator(
                self._reader,
                changes_minutes=self.config.incident.recent_changes_minutes,
                events_minutes=self.config.incident.events_window_minutes,
            )
            self._timeline_builder = RolloutTimelineBuilder(self._reader)
            self._log.info("incident engine ready")
        except Exception as exc:
            raise _ComponentError("engine", exc) from exc

    async def _start_pod_index(self) -> None:
        """Create the pod index supervisor, starting a watch if a namespace is configured.

        A failure here is non-fatal: the REST API still serves the incident views.
        """
        assert self._log is not None
        assert self.config is not None
        assert self._reader is not None
        self._log.debug("starting pod index")
        try:
            from kubernetes_asyncio import client as k8s_client

            from kubepulse.collector.pod_stream import PodWatchStream
            from kubepulse.index.pod_index import PodIndexSupervisor
            from kubepulse.ownership.resolver import build_generation_index

            reader = self._reader
            core_v1 = k8s_client.CoreV1Api(self._api_client)

            async def _load_generation_index(namespace: str) -> GenerationIndex:
                return build_generation_index(await reader.list_replica_generations(namespace))

            supervisor = PodIndexSupervisor(
                stream_factory=lambda namespace: PodWatchStream(core_v1, namespace),
                load_generation_index=_load_generation_index,
                debounce=self.config.pod_index.debounce_seconds,
                age_refresh=float(self.config.pod_index.age_refresh_seconds),
            )
            self._pod_supervisor = supervisor
            if self.config.pod_index.namespace:
                await supervisor.start(self.config.pod_index.namespace)
            self._log.info("pod index ready", namespace=self.config.pod_index.namespace or None)
        except Exception as exc:
            self._log.warning("pod index unavailable", error=str(exc))
            self._pod_supervisor = None

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._aggregator is not None
        assert self._timeline_builder is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubepulse.api import create_app

            fastapi_app = create_app(
                aggregator=self._aggregator,
                timeline_builder=self._timeline_builder,
                pod_supervisor=self._pod_supervisor,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", host=self.config.api.host, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubepulse shutting down")

        self._running = False

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_component("pod_index", self._pod_supervisor)
        self._rest_server = None
        self._timeline_builder = None
        self._aggregator = None
        self._reader = None
        await self._stop_k8s_client()

        log.info("kubepulse stopped")

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
        """Close the ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None


def _kubepulse_version() -> str:
    from kubepulse import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubePulseApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app._running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()
