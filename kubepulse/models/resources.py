"""Point-in-time views of the cluster objects the correlation engine reads.

Every instance is materialised fresh from a listing; nothing here is
persisted.  Values the API may omit are explicit ``None`` rather than zero
so that callers can tell "unknown" from "zero".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ResourceKind(StrEnum):
    """Kubernetes kinds the engine reasons about."""

    POD = "Pod"
    REPLICA_SET = "ReplicaSet"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"
    JOB = "Job"
    HORIZONTAL_POD_AUTOSCALER = "HorizontalPodAutoscaler"
    INGRESS = "Ingress"


# Kinds listed when scanning for unhealthy workloads.
WORKLOAD_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.DEPLOYMENT,
    ResourceKind.STATEFUL_SET,
    ResourceKind.DAEMON_SET,
)


@dataclass(frozen=True)
class OwnerReference:
    """One entry of ``metadata.ownerReferences``.

    ``kind`` stays free text: owners may be any kind, including CRDs.
    """

    kind: str
    name: str


@dataclass(frozen=True)
class Workload:
    """A Deployment, StatefulSet or DaemonSet with its replica counts."""

    kind: ResourceKind
    name: str
    namespace: str
    desired_replicas: int | None
    ready_replicas: int | None
    restart_annotation: str | None = None

    @property
    def healthy(self) -> bool:
        """Ready >= desired.  Unknown counts are treated as healthy."""
        if self.desired_replicas is None or self.ready_replicas is None:
            return True
        return self.ready_replicas >= self.desired_replicas

    @property
    def ready_ratio(self) -> str:
        return format_ready_ratio(self.ready_replicas, self.desired_replicas)


@dataclass(frozen=True)
class ContainerStatus:
    name: str
    ready: bool
    restart_count: int
    waiting_reason: str | None = None
    terminated_reason: str | None = None


@dataclass(frozen=True)
class ContainerResources:
    """Requests and limits of a single container, as quantity strings."""

    requests_cpu: str = ""
    requests_memory: str = ""
    limits_cpu: str = ""
    limits_memory: str = ""


@dataclass(frozen=True)
class Pod:
    """A pod as seen by a listing or a watch event.

    ``resources`` describes the first container only; it stands in for the
    whole pod when scoring saturation.
    """

    name: str
    namespace: str
    phase: str | None
    owner_references: tuple[OwnerReference, ...] = ()
    container_statuses: tuple[ContainerStatus, ...] = ()
    resources: ContainerResources = field(default_factory=ContainerResources)
    node_name: str = ""
    pod_ip: str = ""
    created_at: datetime | None = None
    deleting: bool = False

    @property
    def restart_count(self) -> int:
        return sum(cs.restart_count for cs in self.container_statuses)

    @property
    def ready_containers(self) -> int:
        return sum(1 for cs in self.container_statuses if cs.ready)


@dataclass(frozen=True)
class ReplicaGeneration:
    """One ReplicaSet generation of a Deployment's pod template."""

    name: str
    namespace: str
    revision: int | None
    owner_references: tuple[OwnerReference, ...] = ()
    replicas: int = 0
    ready_replicas: int = 0
    image: str | None = None
    created_at: datetime | None = None

    @property
    def sort_revision(self) -> int:
        """Revision used for ordering; a missing revision orders as 0."""
        return self.revision if self.revision is not None else 0


@dataclass(frozen=True)
class Autoscaler:
    """A HorizontalPodAutoscaler's current scaling status."""

    name: str
    namespace: str
    current_replicas: int = 0
    desired_replicas: int = 0


@dataclass(frozen=True)
class IngressRoute:
    """One host/path pair of an Ingress that routes to a Service."""

    ingress_name: str
    host: str
    path: str
    backend_service: str


@dataclass(frozen=True)
class EventInfo:
    """An event scoped to a single object (``regarding`` kind + name)."""

    reason: str
    message: str
    count: int
    event_type: str
    age: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class NamespaceEvent:
    """An event from a namespace-wide listing."""

    involved_kind: str
    involved_name: str
    reason: str
    message: str
    count: int
    event_type: str
    timestamp: datetime | None
    age: str


def format_ready_ratio(ready: int | None, desired: int | None) -> str:
    """Render ``ready/desired``, or ``?`` when either side is unknown."""
    if ready is None or desired is None:
        return "?"
    return f"{ready}/{desired}"
