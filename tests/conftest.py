"""Shared fixtures: an in-memory ClusterReader for engine tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from kubepulse.cluster.reader import ClusterAPIError
from kubepulse.models.resources import (
    Autoscaler,
    EventInfo,
    IngressRoute,
    NamespaceEvent,
    Pod,
    ReplicaGeneration,
    ResourceKind,
    Workload,
)


class FakeClusterReader:
    """ClusterReader serving canned listings.

    ``fail`` names listing operations that raise :class:`ClusterAPIError`
    (``list_pods``, ``list_autoscalers``, ...).  ``events`` is keyed by
    ``(kind, name)`` of the regarded object.
    """

    def __init__(self) -> None:
        self.workloads: dict[ResourceKind, list[Workload]] = {}
        self.pods: list[Pod] = []
        self.generations: list[ReplicaGeneration] = []
        self.autoscalers: list[Autoscaler] = []
        self.ingress_routes: list[IngressRoute] = []
        self.namespace_events: list[NamespaceEvent] = []
        self.events: dict[tuple[ResourceKind, str], list[EventInfo]] = {}
        self.fail: set[str] = set()
        self.calls: list[str] = []

    def _check(self, operation: str, namespace: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise ClusterAPIError(operation, namespace, status=500, detail="boom")

    def add_workload(self, workload: Workload) -> None:
        self.workloads.setdefault(workload.kind, []).append(workload)

    async def list_workloads(self, namespace: str, kind: ResourceKind) -> list[Workload]:
        self._check(f"list_workloads:{kind}", namespace)
        self._check("list_workloads", namespace)
        return list(self.workloads.get(kind, []))

    async def list_pods(self, namespace: str) -> list[Pod]:
        self._check("list_pods", namespace)
        return list(self.pods)

    async def list_replica_generations(self, namespace: str) -> list[ReplicaGeneration]:
        self._check("list_replica_generations", namespace)
        return list(self.generations)

    async def list_autoscalers(self, namespace: str) -> list[Autoscaler]:
        self._check("list_autoscalers", namespace)
        return list(self.autoscalers)

    async def list_ingress_routes(self, namespace: str) -> list[IngressRoute]:
        self._check("list_ingress_routes", namespace)
        return list(self.ingress_routes)

    async def list_namespace_events(self, namespace: str) -> list[NamespaceEvent]:
        self._check("list_namespace_events", namespace)
        return list(self.namespace_events)

    async def fetch_events_for(self, namespace: str, name: str, kind: ResourceKind) -> list[EventInfo]:
        self.calls.append(f"fetch_events_for:{kind}/{name}")
        return list(self.events.get((kind, name), []))


@pytest.fixture
def reader() -> FakeClusterReader:
    return FakeClusterReader()


@pytest.fixture
def raw_pod() -> Callable[..., dict[str, Any]]:
    """Factory for API wire-form pod dicts."""

    def _build(
        name: str,
        *,
        namespace: str = "default",
        phase: str = "Running",
        owner: tuple[str, str] | None = ("ReplicaSet", "web-7d9f"),
        restarts: int = 0,
        ready: bool = True,
        waiting_reason: str | None = None,
        created: str = "2024-01-15T10:00:00Z",
        deleting: bool = False,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": name, "namespace": namespace, "creationTimestamp": created}
        if owner is not None:
            metadata["ownerReferences"] = [{"kind": owner[0], "name": owner[1]}]
        if deleting:
            metadata["deletionTimestamp"] = "2024-01-15T10:05:00Z"
        state: dict[str, Any] = {"waiting": {"reason": waiting_reason}} if waiting_reason else {"running": {}}
        return {
            "metadata": metadata,
            "spec": {
                "nodeName": "node-1",
                "containers": [
                    {
                        "name": "app",
                        "image": "web:1.0",
                        "resources": {
                            "requests": {"cpu": "100m", "memory": "128Mi"},
                            "limits": {"cpu": "500m", "memory": "256Mi"},
                        },
                    }
                ],
            },
            "status": {
                "phase": phase,
                "podIP": "10.0.0.7",
                "containerStatuses": [
                    {"name": "app", "ready": ready, "restartCount": restarts, "state": state},
                ],
            },
        }

    return _build
