"""Raw Kubernetes object dict -> model parsers.

Input dicts are in API wire form (camelCase keys), as produced by a watch
stream's ``raw_object`` or by ``ApiClient.sanitize_for_serialization``.
Parsers never raise on missing or malformed fields; absent values become
``None`` or the documented default.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from kubepulse.formatting import format_age
from kubepulse.models.resources import (
    Autoscaler,
    ContainerResources,
    ContainerStatus,
    EventInfo,
    IngressRoute,
    NamespaceEvent,
    OwnerReference,
    Pod,
    ReplicaGeneration,
    ResourceKind,
    Workload,
)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"

# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _dict(obj: Any, key: str) -> dict[str, Any]:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, dict) else {}


def _list(obj: Any, key: str) -> list[Any]:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, list) else []


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an API timestamp (RFC 3339 string or datetime) into aware UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _owner_references(metadata: dict[str, Any]) -> tuple[OwnerReference, ...]:
    refs: list[OwnerReference] = []
    for ref in _list(metadata, "ownerReferences"):
        if not isinstance(ref, dict):
            continue
        refs.append(OwnerReference(kind=_str(ref.get("kind")), name=_str(ref.get("name"))))
    return tuple(refs)


def _first_container(pod_spec: dict[str, Any]) -> dict[str, Any]:
    containers = _list(pod_spec, "containers")
    if containers and isinstance(containers[0], dict):
        return containers[0]
    return {}


# ---------------------------------------------------------------------------
# Workloads
# ---------------------------------------------------------------------------


def parse_workload(raw: dict[str, Any], kind: ResourceKind) -> Workload:
    """Parse a Deployment, StatefulSet or DaemonSet into a :class:`Workload`.

    Deployments and StatefulSets compare ``spec.replicas`` (default 1) with
    ``status.readyReplicas`` (default 0).  DaemonSets compare
    ``status.desiredNumberScheduled`` with ``status.numberReady``.
    """
    metadata = _dict(raw, "metadata")
    spec = _dict(raw, "spec")
    status = _dict(raw, "status")

    desired: int | None
    ready: int | None
    if kind == ResourceKind.DAEMON_SET:
        desired = _int(status.get("desiredNumberScheduled"))
        ready = _int(status.get("numberReady"))
        if ready is None and desired is not None:
            ready = 0
    else:
        desired = _int(spec.get("replicas"))
        if desired is None:
            desired = 1
        ready = _int(status.get("readyReplicas")) or 0

    restart_annotation: str | None = None
    if kind == ResourceKind.DEPLOYMENT:
        template_meta = _dict(_dict(spec, "template"), "metadata")
        value = _dict(template_meta, "annotations").get(RESTARTED_AT_ANNOTATION)
        restart_annotation = value if isinstance(value, str) and value else None

    return Workload(
        kind=kind,
        name=_str(metadata.get("name")),
        namespace=_str(metadata.get("namespace")),
        desired_replicas=desired,
        ready_replicas=ready,
        restart_annotation=restart_annotation,
    )


# ---------------------------------------------------------------------------
# Pods
# ---------------------------------------------------------------------------


def _container_status(raw: dict[str, Any]) -> ContainerStatus:
    state = _dict(raw, "state")
    waiting = state.get("waiting")
    terminated = state.get("terminated")
    return ContainerStatus(
        name=_str(raw.get("name")),
        ready=bool(raw.get("ready", False)),
        restart_count=_int(raw.get("restartCount")) or 0,
        waiting_reason=_str(waiting.get("reason")) or None if isinstance(waiting, dict) else None,
        terminated_reason=_str(terminated.get("reason")) or None if isinstance(terminated, dict) else None,
    )


def _container_resources(container: dict[str, Any]) -> ContainerResources:
    resources = _dict(container, "resources")
    requests = _dict(resources, "requests")
    limits = _dict(resources, "limits")
    return ContainerResources(
        requests_cpu=str(requests.get("cpu", "")),
        requests_memory=str(requests.get("memory", "")),
        limits_cpu=str(limits.get("cpu", "")),
        limits_memory=str(limits.get("memory", "")),
    )


def parse_pod(raw: dict[str, Any]) -> Pod:
    metadata = _dict(raw, "metadata")
    spec = _dict(raw, "spec")
    status = _dict(raw, "status")
    phase = status.get("phase")
    return Pod(
        name=_str(metadata.get("name")),
        namespace=_str(metadata.get("namespace")),
        phase=phase if isinstance(phase, str) and phase else None,
        owner_references=_owner_references(metadata),
        container_statuses=tuple(
            _container_status(cs) for cs in _list(status, "containerStatuses") if isinstance(cs, dict)
        ),
        resources=_container_resources(_first_container(spec)),
        node_name=_str(spec.get("nodeName")),
        pod_ip=_str(status.get("podIP")),
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
        deleting=metadata.get("deletionTimestamp") is not None,
    )


def pod_name(raw: dict[str, Any]) -> str:
    """Return ``metadata.name`` of a raw pod, or ``""``."""
    return _str(_dict(raw, "metadata").get("name"))


# ---------------------------------------------------------------------------
# ReplicaSets, autoscalers, ingresses
# ---------------------------------------------------------------------------


def parse_replica_generation(raw: dict[str, Any]) -> ReplicaGeneration:
    """Parse a ReplicaSet.  An unparsable revision annotation becomes ``None``."""
    metadata = _dict(raw, "metadata")
    spec = _dict(raw, "spec")
    status = _dict(raw, "status")
    container = _first_container(_dict(_dict(spec, "template"), "spec"))
    image = container.get("image")
    return ReplicaGeneration(
        name=_str(metadata.get("name")),
        namespace=_str(metadata.get("namespace")),
        revision=_int(_dict(metadata, "annotations").get(REVISION_ANNOTATION)),
        owner_references=_owner_references(metadata),
        replicas=_int(status.get("replicas")) or 0,
        ready_replicas=_int(status.get("readyReplicas")) or 0,
        image=image if isinstance(image, str) and image else None,
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
    )


def parse_autoscaler(raw: dict[str, Any]) -> Autoscaler:
    metadata = _dict(raw, "metadata")
    status = _dict(raw, "status")
    return Autoscaler(
        name=_str(metadata.get("name")),
        namespace=_str(metadata.get("namespace")),
        current_replicas=_int(status.get("currentReplicas")) or 0,
        desired_replicas=_int(status.get("desiredReplicas")) or 0,
    )


def parse_ingress_routes(raw: dict[str, Any]) -> list[IngressRoute]:
    """Flatten an Ingress into one route per rule/path with a service backend.

    A rule without a host matches any host (``*``); a path entry without a
    path is ``/``.
    """
    name = _str(_dict(raw, "metadata").get("name"))
    routes: list[IngressRoute] = []
    for rule in _list(_dict(raw, "spec"), "rules"):
        if not isinstance(rule, dict):
            continue
        host = _str(rule.get("host")) or "*"
        for path in _list(_dict(rule, "http"), "paths"):
            if not isinstance(path, dict):
                continue
            service = _str(_dict(_dict(path, "backend"), "service").get("name"))
            if not service:
                continue
            routes.append(
                IngressRoute(
                    ingress_name=name,
                    host=host,
                    path=_str(path.get("path")) or "/",
                    backend_service=service,
                )
            )
    return routes


# ---------------------------------------------------------------------------
# Events (events.k8s.io/v1)
# ---------------------------------------------------------------------------


def _event_time(raw: dict[str, Any]) -> datetime | None:
    """``eventTime``, falling back to the object's creation timestamp."""
    return parse_timestamp(raw.get("eventTime")) or parse_timestamp(
        _dict(raw, "metadata").get("creationTimestamp")
    )


def _event_count(raw: dict[str, Any]) -> int:
    count = _int(raw.get("deprecatedCount"))
    return count if count is not None else 1


def parse_event(raw: dict[str, Any], now: datetime | None = None) -> EventInfo:
    created = parse_timestamp(_dict(raw, "metadata").get("creationTimestamp"))
    return EventInfo(
        reason=_str(raw.get("reason")),
        message=_str(raw.get("note")),
        count=_event_count(raw),
        event_type=_str(raw.get("type")) or "Normal",
        age=format_age(created, now),
        timestamp=_event_time(raw),
    )


def parse_namespace_event(raw: dict[str, Any], now: datetime | None = None) -> NamespaceEvent:
    regarding = _dict(raw, "regarding")
    created = parse_timestamp(_dict(raw, "metadata").get("creationTimestamp"))
    return NamespaceEvent(
        involved_kind=_str(regarding.get("kind")),
        involved_name=_str(regarding.get("name")),
        reason=_str(raw.get("reason")),
        message=_str(raw.get("note")),
        count=_event_count(raw),
        event_type=_str(raw.get("type")) or "Normal",
        timestamp=_event_time(raw),
        age=format_age(created, now),
    )
