"""FastAPI route handlers for the kubepulse REST API.

All routes are registered on a single APIRouter that ``app.py`` mounts
under the ``/api/v1`` prefix.

Error code conventions:
    400 INVALID_PARAMETER    -- query or path parameter failed validation
    503 POD_WATCH_DISABLED   -- the server was started without a pod index
    502 CLUSTER_API_ERROR    -- a required cluster listing failed
    500 INTERNAL_ERROR       -- unexpected server-side failure
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from kubepulse.api.schemas import (
    AffectedRouteResponse,
    ChangeEventResponse,
    ChangesResponse,
    ErrorResponse,
    HealthStatus,
    IncidentSummaryResponse,
    NamespaceEventResponse,
    NamespaceEventsResponse,
    PodInfoResponse,
    PodListResponse,
    PodWatchStatus,
    RolloutTimelineResponse,
    SaturationResponse,
    UnhealthyWorkloadResponse,
    WorkloadSaturationResponse,
)
from kubepulse.cluster.reader import ClusterAPIError
from kubepulse.models.incident import ChangeEvent, IncidentSummary

_log = structlog.get_logger(component="api.routes")

router = APIRouter()

_T = TypeVar("_T")

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


async def _run_view(operation: str, namespace: str, view: Awaitable[_T]) -> _T | JSONResponse:
    """Await an engine call, mapping failures to the error envelope."""
    try:
        return await view
    except ClusterAPIError as exc:
        _log.warning("cluster_api_error", operation=operation, namespace=namespace, error=str(exc))
        return _error(502, "CLUSTER_API_ERROR", str(exc))
    except Exception as exc:
        _log.error("endpoint_error", operation=operation, namespace=namespace, error=str(exc), exc_info=True)
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")


def _change_to_schema(change: ChangeEvent) -> ChangeEventResponse:
    return ChangeEventResponse(
        timestamp=change.timestamp,
        change_type=change.change_type.value,
        resource_kind=change.resource_kind.value,
        resource_name=change.resource_name,
        description=change.description,
        details=dataclasses.asdict(change.details),
    )


def _summary_to_schema(namespace: str, summary: IncidentSummary) -> IncidentSummaryResponse:
    return IncidentSummaryResponse(
        namespace=namespace,
        unhealthy_workloads=[
            UnhealthyWorkloadResponse.model_validate(w, from_attributes=True) for w in summary.unhealthy_workloads
        ],
        recent_changes=[_change_to_schema(c) for c in summary.recent_changes],
        error_events=[NamespaceEventResponse.model_validate(e, from_attributes=True) for e in summary.error_events],
        saturation=[WorkloadSaturationResponse.model_validate(s, from_attributes=True) for s in summary.saturation],
        affected_routes=[
            AffectedRouteResponse.model_validate(r, from_attributes=True) for r in summary.affected_routes
        ],
    )


def _pod_watch_status(request: Request) -> PodWatchStatus:
    supervisor = request.app.state.pod_supervisor
    state = supervisor.state if supervisor is not None else None
    return PodWatchStatus(
        namespace=supervisor.namespace if supervisor is not None else None,
        state=str(state) if state is not None else "inactive",
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe.  Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    from kubepulse import __version__

    return HealthStatus(status="ok", version=__version__, pod_watch=_pod_watch_status(request).state)


@router.get(
    "/namespaces/{namespace}/incident-summary",
    response_model=IncidentSummaryResponse,
    summary="Incident summary",
    description=(
        "Unhealthy workloads, recent changes, warning events, saturation and affected routes "
        "for one namespace.  Fails as a whole if any required listing fails."
    ),
    responses=_ERROR_RESPONSES,
)
async def get_incident_summary(request: Request, namespace: str) -> IncidentSummaryResponse:
    """``GET /api/v1/namespaces/{ns}/incident-summary``"""
    aggregator = request.app.state.aggregator
    result = await _run_view("incident_summary", namespace, aggregator.get_incident_summary(namespace))
    if isinstance(result, JSONResponse):
        return result  # type: ignore[return-value]
    return _summary_to_schema(namespace, result)


@router.get(
    "/namespaces/{namespace}/changes",
    response_model=ChangesResponse,
    summary="Recent changes",
    responses=_ERROR_RESPONSES,
)
async def get_changes(
    request: Request,
    namespace: str,
    since_minutes: int = Query(default=15, ge=1, le=1440),
) -> ChangesResponse:
    """``GET /api/v1/namespaces/{ns}/changes?since_minutes=N``"""
    aggregator = request.app.state.aggregator
    result = await _run_view("changes", namespace, aggregator.detect_recent_changes(namespace, since_minutes))
    if isinstance(result, JSONResponse):
        return result  # type: ignore[return-value]
    return ChangesResponse(
        namespace=namespace,
        since_minutes=since_minutes,
        changes=[_change_to_schema(c) for c in result],
    )


@router.get(
    "/namespaces/{namespace}/rollouts/{deployment}",
    response_model=RolloutTimelineResponse,
    summary="Rollout timeline of a Deployment",
    responses=_ERROR_RESPONSES,
)
async def get_rollout_timeline(request: Request, namespace: str, deployment: str) -> RolloutTimelineResponse:
    """``GET /api/v1/namespaces/{ns}/rollouts/{deployment}``"""
    builder = request.app.state.timeline_builder
    result = await _run_view("rollout_timeline", namespace, builder.build(namespace, deployment))
    if isinstance(result, JSONResponse):
        return result  # type: ignore[return-value]
    return RolloutTimelineResponse.model_validate(result, from_attributes=True)


@router.get(
    "/namespaces/{namespace}/saturation",
    response_model=SaturationResponse,
    summary="Workload saturation",
    responses=_ERROR_RESPONSES,
)
async def get_saturation(request: Request, namespace: str) -> SaturationResponse:
    """``GET /api/v1/namespaces/{ns}/saturation``"""
    aggregator = request.app.state.aggregator
    result = await _run_view("saturation", namespace, aggregator.get_workload_saturation(namespace))
    if isinstance(result, JSONResponse):
        return result  # type: ignore[return-value]
    return SaturationResponse(
        namespace=namespace,
        workloads=[WorkloadSaturationResponse.model_validate(s, from_attributes=True) for s in result],
    )


@router.get(
    "/namespaces/{namespace}/events",
    response_model=NamespaceEventsResponse,
    summary="Namespace events, newest first",
    responses=_ERROR_RESPONSES,
)
async def get_namespace_events(
    request: Request,
    namespace: str,
    since_minutes: int | None = Query(default=None, ge=1, le=1440),
) -> NamespaceEventsResponse:
    """``GET /api/v1/namespaces/{ns}/events?since_minutes=N``"""
    aggregator = request.app.state.aggregator
    result = await _run_view("events", namespace, aggregator.fetch_namespace_events(namespace, since_minutes))
    if isinstance(result, JSONResponse):
        return result  # type: ignore[return-value]
    return NamespaceEventsResponse(
        namespace=namespace,
        events=[NamespaceEventResponse.model_validate(e, from_attributes=True) for e in result],
    )


@router.post(
    "/namespaces/{namespace}/pod-watch",
    response_model=PodWatchStatus,
    summary="Start watching the pods of a namespace",
    description="Replaces any pod watch already running.",
    responses={503: {"model": ErrorResponse}},
)
async def start_pod_watch(request: Request, namespace: str) -> PodWatchStatus:
    """``POST /api/v1/namespaces/{ns}/pod-watch``"""
    supervisor = request.app.state.pod_supervisor
    if supervisor is None:
        return _error(503, "POD_WATCH_DISABLED", "The live pod index is not enabled.")  # type: ignore[return-value]
    await supervisor.start(namespace)
    return _pod_watch_status(request)


@router.delete(
    "/pod-watch",
    response_model=PodWatchStatus,
    summary="Stop the active pod watch",
    responses={503: {"model": ErrorResponse}},
)
async def stop_pod_watch(request: Request) -> PodWatchStatus:
    """``DELETE /api/v1/pod-watch``"""
    supervisor = request.app.state.pod_supervisor
    if supervisor is None:
        return _error(503, "POD_WATCH_DISABLED", "The live pod index is not enabled.")  # type: ignore[return-value]
    await supervisor.stop()
    return _pod_watch_status(request)


@router.get(
    "/pods",
    response_model=PodListResponse,
    summary="Latest pod list of the active pod watch",
)
async def get_pods(request: Request) -> PodListResponse:
    """``GET /api/v1/pods``"""
    status = _pod_watch_status(request)
    supervisor = request.app.state.pod_supervisor
    pods = supervisor.latest() if supervisor is not None else []
    return PodListResponse(
        namespace=status.namespace,
        state=status.state,
        pods=[PodInfoResponse.model_validate(p, from_attributes=True) for p in pods],
    )
