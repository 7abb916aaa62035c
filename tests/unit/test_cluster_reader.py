"""Unit tests for kubepulse.cluster.reader.KubernetesClusterReader."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kubepulse.cluster.reader import ClusterAPIError, KubernetesClusterReader
from kubepulse.models.resources import ResourceKind


def _make_reader(items: list[dict[str, Any]] | None = None) -> tuple[KubernetesClusterReader, MagicMock, MagicMock]:
    """Reader over mocked API groups; every list call returns *items*."""
    api_client = MagicMock()
    api_client.sanitize_for_serialization = MagicMock(return_value={"items": items or []})
    k8s = MagicMock()
    with patch("kubepulse.cluster.reader.k8s_client", k8s):
        reader = KubernetesClusterReader(api_client)
    for group in (reader._core, reader._apps, reader._autoscaling, reader._networking, reader._events):
        for name in (
            "list_namespaced_pod",
            "list_namespaced_deployment",
            "list_namespaced_stateful_set",
            "list_namespaced_daemon_set",
            "list_namespaced_replica_set",
            "list_namespaced_horizontal_pod_autoscaler",
            "list_namespaced_ingress",
            "list_namespaced_event",
        ):
            setattr(group, name, AsyncMock(return_value=MagicMock()))
    return reader, api_client, k8s


class TestListings:
    async def test_list_pods_parses_items(self) -> None:
        reader, _, _ = _make_reader([{"metadata": {"name": "web-1", "namespace": "prod"}, "status": {"phase": "Running"}}])
        [pod] = await reader.list_pods("prod")
        assert (pod.name, pod.phase) == ("web-1", "Running")
        reader._core.list_namespaced_pod.assert_awaited_once_with("prod")

    async def test_list_workloads_dispatches_by_kind(self) -> None:
        reader, _, _ = _make_reader([{"metadata": {"name": "db"}, "spec": {"replicas": 2}, "status": {"readyReplicas": 2}}])
        [wl] = await reader.list_workloads("prod", ResourceKind.STATEFUL_SET)
        assert wl.kind == ResourceKind.STATEFUL_SET
        reader._apps.list_namespaced_stateful_set.assert_awaited_once_with("prod")

    async def test_list_workloads_rejects_non_workload_kind(self) -> None:
        reader, _, _ = _make_reader()
        with pytest.raises(ValueError, match="not a workload kind"):
            await reader.list_workloads("prod", ResourceKind.POD)

    async def test_ingress_routes_are_flattened(self) -> None:
        ingress = {
            "metadata": {"name": "main"},
            "spec": {"rules": [{"host": "a", "http": {"paths": [
                {"path": "/x", "backend": {"service": {"name": "x"}}},
                {"path": "/y", "backend": {"service": {"name": "y"}}},
            ]}}]},
        }
        reader, _, _ = _make_reader([ingress, ingress])
        routes = await reader.list_ingress_routes("prod")
        assert len(routes) == 4

    async def test_api_error_is_wrapped(self) -> None:
        reader, _, _ = _make_reader()
        reader._core.list_namespaced_pod = AsyncMock(side_effect=ApiException(status=403, reason="Forbidden"))
        with pytest.raises(ClusterAPIError) as exc_info:
            await reader.list_pods("prod")
        assert exc_info.value.status == 403
        assert "list_pods" in str(exc_info.value)
        assert "prod" in str(exc_info.value)

    async def test_transport_error_is_wrapped(self) -> None:
        reader, _, _ = _make_reader()
        reader._apps.list_namespaced_replica_set = AsyncMock(side_effect=TimeoutError())
        with pytest.raises(ClusterAPIError) as exc_info:
            await reader.list_replica_generations("prod")
        assert exc_info.value.status is None

    @pytest.mark.parametrize(
        "error",
        [aiohttp.ServerDisconnectedError(), aiohttp.ClientPayloadError("truncated body")],
    )
    async def test_aiohttp_error_is_wrapped(self, error: Exception) -> None:
        reader, _, _ = _make_reader()
        reader._core.list_namespaced_pod = AsyncMock(side_effect=error)
        with pytest.raises(ClusterAPIError) as exc_info:
            await reader.list_pods("prod")
        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientError)


class TestFetchEventsFor:
    async def test_uses_regarding_field_selector(self) -> None:
        reader, _, _ = _make_reader([{"reason": "Scheduled", "note": "ok", "type": "Normal"}])
        [event] = await reader.fetch_events_for("prod", "web", ResourceKind.DEPLOYMENT)
        assert event.reason == "Scheduled"
        reader._events.list_namespaced_event.assert_awaited_once_with(
            "prod", field_selector="regarding.name=web,regarding.kind=Deployment"
        )

    async def test_failure_degrades_to_empty(self) -> None:
        reader, _, _ = _make_reader()
        reader._events.list_namespaced_event = AsyncMock(side_effect=ApiException(status=500))
        assert await reader.fetch_events_for("prod", "web", ResourceKind.DEPLOYMENT) == []

    async def test_dropped_connection_degrades_to_empty(self) -> None:
        reader, _, _ = _make_reader()
        reader._events.list_namespaced_event = AsyncMock(side_effect=aiohttp.ServerDisconnectedError())
        assert await reader.fetch_events_for("prod", "web", ResourceKind.DEPLOYMENT) == []
