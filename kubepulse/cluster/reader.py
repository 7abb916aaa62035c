"""Read access to the cluster API.

:class:`ClusterReader` is the boundary the correlation engine depends on;
:class:`KubernetesClusterReader` implements it with kubernetes_asyncio.
Every listing is a fresh read of current state; nothing is cached here.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiohttp
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio.client.exceptions import ApiException

from kubepulse.cluster.parsers import (
    parse_autoscaler,
    parse_event,
    parse_ingress_routes,
    parse_namespace_event,
    parse_pod,
    parse_replica_generation,
    parse_workload,
)
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
from kubepulse.observability.logging import get_logger
from kubepulse.observability.metrics import event_lookup_failures_total

_log = get_logger("cluster.reader")


class ClusterAPIError(Exception):
    """A cluster API read failed (HTTP error, transport error or timeout)."""

    def __init__(self, operation: str, namespace: str, status: int | None = None, detail: str = "") -> None:
        msg = f"{operation} in namespace '{namespace}' failed"
        if status is not None:
            msg += f" (HTTP {status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.operation = operation
        self.namespace = namespace
        self.status = status


class ClusterReader(Protocol):
    """Namespace-scoped listings consumed by the aggregation engine."""

    async def list_workloads(self, namespace: str, kind: ResourceKind) -> list[Workload]: ...

    async def list_pods(self, namespace: str) -> list[Pod]: ...

    async def list_replica_generations(self, namespace: str) -> list[ReplicaGeneration]: ...

    async def list_autoscalers(self, namespace: str) -> list[Autoscaler]: ...

    async def list_ingress_routes(self, namespace: str) -> list[IngressRoute]: ...

    async def list_namespace_events(self, namespace: str) -> list[NamespaceEvent]: ...

    async def fetch_events_for(self, namespace: str, name: str, kind: ResourceKind) -> list[EventInfo]:
        """Events whose ``regarding`` object is *kind*/*name*.  Never raises."""
        ...


class KubernetesClusterReader:
    """:class:`ClusterReader` backed by a kubernetes_asyncio ``ApiClient``.

    Usage::

        await kubernetes_asyncio.config.load_kube_config()
        reader = KubernetesClusterReader(kubernetes_asyncio.client.ApiClient())
        pods = await reader.list_pods("default")
    """

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._core = k8s_client.CoreV1Api(api_client)
        self._apps = k8s_client.AppsV1Api(api_client)
        self._autoscaling = k8s_client.AutoscalingV1Api(api_client)
        self._networking = k8s_client.NetworkingV1Api(api_client)
        self._events = k8s_client.EventsV1Api(api_client)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_workloads(self, namespace: str, kind: ResourceKind) -> list[Workload]:
        list_funcs: dict[ResourceKind, Callable[..., Awaitable[Any]]] = {
            ResourceKind.DEPLOYMENT: self._apps.list_namespaced_deployment,
            ResourceKind.STATEFUL_SET: self._apps.list_namespaced_stateful_set,
            ResourceKind.DAEMON_SET: self._apps.list_namespaced_daemon_set,
        }
        list_func = list_funcs.get(kind)
        if list_func is None:
            raise ValueError(f"{kind} is not a workload kind")
        items = await self._list(f"list_{kind.lower()}s", namespace, list_func)
        return [parse_workload(item, kind) for item in items]

    async def list_pods(self, namespace: str) -> list[Pod]:
        items = await self._list("list_pods", namespace, self._core.list_namespaced_pod)
        return [parse_pod(item) for item in items]

    async def list_replica_generations(self, namespace: str) -> list[ReplicaGeneration]:
        items = await self._list("list_replicasets", namespace, self._apps.list_namespaced_replica_set)
        return [parse_replica_generation(item) for item in items]

    async def list_autoscalers(self, namespace: str) -> list[Autoscaler]:
        items = await self._list(
            "list_autoscalers",
            namespace,
            self._autoscaling.list_namespaced_horizontal_pod_autoscaler,
        )
        return [parse_autoscaler(item) for item in items]

    async def list_ingress_routes(self, namespace: str) -> list[IngressRoute]:
        items = await self._list("list_ingresses", namespace, self._networking.list_namespaced_ingress)
        routes: list[IngressRoute] = []
        for item in items:
            routes.extend(parse_ingress_routes(item))
        return routes

    async def list_namespace_events(self, namespace: str) -> list[NamespaceEvent]:
        items = await self._list("list_events", namespace, self._events.list_namespaced_event)
        return [parse_namespace_event(item) for item in items]

    async def fetch_events_for(self, namespace: str, name: str, kind: ResourceKind) -> list[EventInfo]:
        selector = f"regarding.name={name},regarding.kind={kind}"
        try:
            items = await self._list(
                "fetch_events_for",
                namespace,
                self._events.list_namespaced_event,
                field_selector=selector,
            )
        except ClusterAPIError as exc:
            _log.debug("event_lookup_failed", namespace=namespace, kind=str(kind), name=name, error=str(exc))
            event_lookup_failures_total.labels(kind=str(kind)).inc()
            return []
        return [parse_event(item) for item in items]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _list(
        self,
        operation: str,
        namespace: str,
        list_func: Callable[..., Awaitable[Any]],
        **kwargs: Any,
    ) -> list[dict[str, Any]]:
        """Call a namespaced list function and return its items as raw dicts."""
        try:
            result = await list_func(namespace, **kwargs)
        except ApiException as exc:
            raise ClusterAPIError(operation, namespace, status=exc.status, detail=str(exc.reason)) from exc
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            raise ClusterAPIError(operation, namespace, detail=str(exc)) from exc

        raw = self._api_client.sanitize_for_serialization(result)
        items = raw.get("items", []) if isinstance(raw, dict) else []
        return [item for item in items if isinstance(item, dict)]
