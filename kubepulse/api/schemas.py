"""Pydantic response models for the kubepulse REST API.

All models use Pydantic v2 syntax and validate straight from the engine's
dataclasses (``from_attributes``), so derived properties such as
``severity`` or ``score`` are serialised alongside stored fields.
Timestamps serialise as RFC 3339 UTC strings; unknown values stay ``null``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(..., description="Always ``ok`` while the process is running.", examples=["ok"])
    version: str = Field(..., description="kubepulse version string.", examples=["0.1.0"])
    pod_watch: str = Field(
        ...,
        description="State of the live pod index, or ``inactive`` when no namespace is watched.",
        examples=["inactive", "syncing", "ready"],
    )


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=["INVALID_PARAMETER", "POD_WATCH_DISABLED", "CLUSTER_API_ERROR", "INTERNAL_ERROR"],
    )
    detail: str = Field(..., description="Human-readable description of the error.")


class EventInfoResponse(_FromAttributes):
    reason: str
    message: str
    count: int
    event_type: str
    age: str
    timestamp: datetime | None = None


class NamespaceEventResponse(_FromAttributes):
    involved_kind: str
    involved_name: str
    reason: str
    message: str
    count: int
    event_type: str
    timestamp: datetime | None = None
    age: str


# ---------------------------------------------------------------------------
# Incident views
# ---------------------------------------------------------------------------


class UnhealthyWorkloadResponse(_FromAttributes):
    name: str
    kind: str
    ready: str = Field(..., description="``ready/desired``, or ``?`` when the counts are unknown.")
    restart_count: int
    severity: int
    pod_errors: list[str] = Field(default_factory=list)
    events: list[EventInfoResponse] = Field(default_factory=list)


class ChangeEventResponse(BaseModel):
    timestamp: datetime | None = None
    change_type: str
    resource_kind: str
    resource_name: str
    description: str
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Variant payload; ``details.type`` names the variant.",
    )


class PodSaturationResponse(_FromAttributes):
    name: str
    status: str
    restarts: int
    requests_cpu: str
    requests_memory: str
    limits_cpu: str
    limits_memory: str


class WorkloadSaturationResponse(_FromAttributes):
    workload_name: str
    workload_kind: str
    desired_replicas: int | None = None
    ready_replicas: int | None = None
    total_restarts: int
    score: int
    pods: list[PodSaturationResponse] = Field(default_factory=list)


class AffectedRouteResponse(_FromAttributes):
    route_type: str
    route_name: str
    hosts: list[str]
    paths: list[str]
    backend_service: str
    backend_healthy: bool


class IncidentSummaryResponse(BaseModel):
    """Response body for ``GET /api/v1/namespaces/{ns}/incident-summary``."""

    namespace: str
    unhealthy_workloads: list[UnhealthyWorkloadResponse]
    recent_changes: list[ChangeEventResponse]
    error_events: list[NamespaceEventResponse]
    saturation: list[WorkloadSaturationResponse]
    affected_routes: list[AffectedRouteResponse]


class ChangesResponse(BaseModel):
    namespace: str
    since_minutes: int
    changes: list[ChangeEventResponse]


class SaturationResponse(BaseModel):
    namespace: str
    workloads: list[WorkloadSaturationResponse]


class NamespaceEventsResponse(BaseModel):
    namespace: str
    events: list[NamespaceEventResponse]


# ---------------------------------------------------------------------------
# Rollout timeline
# ---------------------------------------------------------------------------


class ReplicaSetSnapshotResponse(_FromAttributes):
    name: str
    revision: int | None = None
    replicas: int
    ready: int
    image: str | None = None


class RolloutStepResponse(_FromAttributes):
    timestamp: datetime | None = None
    step_type: str
    description: str
    old_rs: ReplicaSetSnapshotResponse | None = None
    new_rs: ReplicaSetSnapshotResponse | None = None
    events: list[EventInfoResponse] = Field(default_factory=list)


class RolloutTimelineResponse(_FromAttributes):
    deployment_name: str
    steps: list[RolloutStepResponse]


# ---------------------------------------------------------------------------
# Live pods
# ---------------------------------------------------------------------------


class PodInfoResponse(_FromAttributes):
    name: str
    namespace: str
    status: str
    ready: str
    restarts: int
    age: str
    node: str
    ip: str
    workload_kind: str | None = None
    workload_name: str | None = None


class PodWatchStatus(BaseModel):
    """Response body for the pod-watch start/stop endpoints."""

    namespace: str | None = None
    state: str = Field(..., examples=["inactive", "syncing", "ready", "pending_emit"])


class PodListResponse(PodWatchStatus):
    pods: list[PodInfoResponse] = Field(default_factory=list)
