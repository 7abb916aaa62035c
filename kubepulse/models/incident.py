"""Incident view data structures.

Contract between the aggregation engine and every consumer (REST, CLI,
pod push channel).  All of these are recomputed per request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from kubepulse.models.resources import EventInfo, NamespaceEvent, ResourceKind, format_ready_ratio


class ChangeType(StrEnum):
    """Kind of change surfaced by the recent-change detectors."""

    IMAGE_UPDATE = "ImageUpdate"
    NEW_REPLICA_SET = "NewReplicaSet"
    RESTART = "Restart"
    HPA_SCALE = "HPAScale"
    SCALE_CHANGE = "ScaleChange"


# ---------------------------------------------------------------------------
# Change details (tagged variants; ``type`` is the tag)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageUpdate:
    old_image: str
    new_image: str
    revision: int | None
    type: str = field(default="ImageUpdate", init=False)


@dataclass(frozen=True)
class Restart:
    triggered_at: str
    type: str = field(default="Restart", init=False)


@dataclass(frozen=True)
class HPAScale:
    current_replicas: int
    desired_replicas: int
    metric_status: str
    type: str = field(default="HPAScale", init=False)


@dataclass(frozen=True)
class NewReplicaSet:
    name: str
    revision: int | None
    image: str | None
    type: str = field(default="NewReplicaSet", init=False)


@dataclass(frozen=True)
class Generic:
    info: str
    type: str = field(default="Generic", init=False)


ChangeDetails = ImageUpdate | Restart | HPAScale | NewReplicaSet | Generic


@dataclass(frozen=True)
class ChangeEvent:
    """A detected mutation.  ``timestamp`` is None when it cannot be dated."""

    timestamp: datetime | None
    change_type: ChangeType
    resource_kind: ResourceKind
    resource_name: str
    description: str
    details: ChangeDetails

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.change_type.value, self.resource_name, self.description)


# ---------------------------------------------------------------------------
# Unhealthy workloads and saturation
# ---------------------------------------------------------------------------


@dataclass
class UnhealthyWorkload:
    """A workload failing readiness, or one whose pods are crash-looping.

    Entries synthesised from pod signals have unknown replica counts, so
    ``ready`` renders as ``?``.
    """

    name: str
    kind: ResourceKind
    ready_replicas: int | None
    desired_replicas: int | None
    restart_count: int = 0
    pod_errors: list[str] = field(default_factory=list)
    events: list[EventInfo] = field(default_factory=list)

    @property
    def ready(self) -> str:
        return format_ready_ratio(self.ready_replicas, self.desired_replicas)

    @property
    def severity(self) -> int:
        return self.restart_count + 10 * len(self.pod_errors)


@dataclass(frozen=True)
class PodSaturationInfo:
    name: str
    status: str
    restarts: int
    requests_cpu: str
    requests_memory: str
    limits_cpu: str
    limits_memory: str


@dataclass
class WorkloadSaturation:
    workload_name: str
    workload_kind: ResourceKind
    desired_replicas: int | None
    ready_replicas: int | None
    pods: list[PodSaturationInfo] = field(default_factory=list)

    @property
    def total_restarts(self) -> int:
        return sum(p.restarts for p in self.pods)

    @property
    def missing_replicas(self) -> int:
        if self.desired_replicas is None or self.ready_replicas is None:
            return 0
        return self.desired_replicas - self.ready_replicas

    @property
    def score(self) -> int:
        return 10 * self.missing_replicas + self.total_restarts


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AffectedRoute:
    """An ingress path whose backend is suspected to hit an unhealthy workload.

    The match is a name heuristic, not selector resolution.
    """

    route_type: str
    route_name: str
    hosts: list[str]
    paths: list[str]
    backend_service: str
    backend_healthy: bool = False


# ---------------------------------------------------------------------------
# Rollout timeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReplicaSetSnapshot:
    name: str
    revision: int | None
    replicas: int
    ready: int
    image: str | None


@dataclass(frozen=True)
class RolloutStep:
    """One point in a rollout.

    Workload-level event steps carry no snapshots and no timestamp; they
    form a general-events lane ahead of the generation steps.
    """

    timestamp: datetime | None
    step_type: str
    description: str
    old_rs: ReplicaSetSnapshot | None = None
    new_rs: ReplicaSetSnapshot | None = None
    events: list[EventInfo] = field(default_factory=list)


@dataclass(frozen=True)
class RolloutTimeline:
    deployment_name: str
    steps: list[RolloutStep] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncidentSummary:
    unhealthy_workloads: list[UnhealthyWorkload]
    recent_changes: list[ChangeEvent]
    error_events: list[NamespaceEvent]
    saturation: list[WorkloadSaturation]
    affected_routes: list[AffectedRoute]


# ---------------------------------------------------------------------------
# Live pod rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodInfo:
    """A pod rendered for the live pod list."""

    name: str
    namespace: str
    status: str
    ready: str
    restarts: int
    age: str
    node: str
    ip: str
    workload_kind: ResourceKind | None = None
    workload_name: str | None = None
