"""Unit tests for kubepulse.app: KubePulseApp lifecycle and _ComponentError."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kubepulse.app import KubePulseApp, _ComponentError
from kubepulse.incident.aggregator import IncidentAggregator
from kubepulse.incident.timeline import RolloutTimelineBuilder
from kubepulse.index.pod_index import PodIndexSupervisor
from kubepulse.models.config import KubePulseConfig, PodIndexConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_app(config: KubePulseConfig | None = None) -> KubePulseApp:
    app = KubePulseApp()
    app.config = config or KubePulseConfig()
    app._log = MagicMock()
    app._api_client = MagicMock()
    return app


# ---------------------------------------------------------------------------
# TestComponentError
# ---------------------------------------------------------------------------


class TestComponentError:
    def test_stores_fields(self) -> None:
        cause = ValueError("no kubeconfig")
        err = _ComponentError("k8s_client", cause)
        assert err.component == "k8s_client"
        assert err.cause is cause
        assert "k8s_client" in str(err)
        assert "no kubeconfig" in str(err)


# ---------------------------------------------------------------------------
# TestInit
# ---------------------------------------------------------------------------


class TestKubePulseAppInit:
    def test_init_defaults(self) -> None:
        app = KubePulseApp()
        assert app.config is None
        assert app._running is False
        assert app._log is None
        assert app._api_client is None
        assert app._aggregator is None
        assert app._timeline_builder is None
        assert app._pod_supervisor is None
        assert app._background_tasks == []


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------


class TestStartEngine:
    async def test_builds_engine_with_configured_windows(self) -> None:
        config = KubePulseConfig()
        config.incident.recent_changes_minutes = 45
        app = _make_app(config)
        with patch("kubepulse.cluster.reader.k8s_client"):
            await app._start_engine()

        assert isinstance(app._aggregator, IncidentAggregator)
        assert app._aggregator._changes_minutes == 45
        assert isinstance(app._timeline_builder, RolloutTimelineBuilder)


class TestStartPodIndex:
    async def test_no_namespace_creates_idle_supervisor(self) -> None:
        app = _make_app()
        app._reader = MagicMock()
        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch.object(PodIndexSupervisor, "start", new=AsyncMock()) as mock_start,
        ):
            await app._start_pod_index()

        assert isinstance(app._pod_supervisor, PodIndexSupervisor)
        mock_start.assert_not_awaited()

    async def test_configured_namespace_starts_watch(self) -> None:
        app = _make_app(KubePulseConfig(pod_index=PodIndexConfig(namespace="payments", debounce_ms=500)))
        app._reader = MagicMock()
        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch.object(PodIndexSupervisor, "start", new=AsyncMock()) as mock_start,
        ):
            await app._start_pod_index()

        mock_start.assert_awaited_once_with("payments")
        assert app._pod_supervisor is not None
        assert app._pod_supervisor._debounce == pytest.approx(0.5)

    async def test_failure_is_non_fatal(self) -> None:
        app = _make_app(KubePulseConfig(pod_index=PodIndexConfig(namespace="payments")))
        app._reader = MagicMock()
        with (
            patch("kubernetes_asyncio.client.CoreV1Api"),
            patch.object(PodIndexSupervisor, "start", new=AsyncMock(side_effect=RuntimeError("boom"))),
        ):
            await app._start_pod_index()

        assert app._pod_supervisor is None
        app._log.warning.assert_called_once()


class TestStartK8sClient:
    async def test_failure_raises_component_error(self) -> None:
        app = _make_app()
        app._api_client = None
        with (
            patch("kubernetes_asyncio.config.load_incluster_config", side_effect=RuntimeError("bad config")),
            pytest.raises(_ComponentError) as exc_info,
        ):
            await app._start_k8s_client()
        assert exc_info.value.component == "k8s_client"


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_never_started_is_noop(self) -> None:
        await KubePulseApp().stop()

    async def test_stop_cancels_tasks_and_stops_pod_index(self) -> None:
        app = _make_app()
        app._running = True
        supervisor = MagicMock()
        supervisor.stop = AsyncMock()
        app._pod_supervisor = supervisor
        api_client = app._api_client
        api_client.close = AsyncMock()

        async def _forever() -> None:
            await asyncio.sleep(3600)

        task = asyncio.create_task(_forever())
        app._background_tasks = [task]

        await app.stop()

        assert task.cancelled()
        assert app._background_tasks == []
        assert app._running is False
        supervisor.stop.assert_awaited_once()
        api_client.close.assert_awaited_once()
        assert app._api_client is None

    async def test_stop_component_handles_exception(self) -> None:
        app = _make_app()
        component = MagicMock()
        component.stop = AsyncMock(side_effect=RuntimeError("stuck"))
        await app._stop_component("pod_index", component)
        app._log.error.assert_called_once()

    async def test_stop_component_handles_timeout(self) -> None:
        app = _make_app()

        async def _slow() -> None:
            await asyncio.sleep(10)

        component = MagicMock()
        component.stop = _slow
        with patch("kubepulse.app._SHUTDOWN_GRACE_SECONDS", 0.01):
            await app._stop_component("pod_index", component)
        app._log.warning.assert_called_once()
