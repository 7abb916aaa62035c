"""FastAPI application factory for the kubepulse REST API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubepulse.api.routes import router
from kubepulse.api.schemas import ErrorResponse


def create_app(
    aggregator: Any,
    timeline_builder: Any,
    pod_supervisor: Any | None = None,
) -> FastAPI:
    """Build the REST application around already-constructed engine objects.

    Args:
        aggregator: An :class:`~kubepulse.incident.aggregator.IncidentAggregator`.
        timeline_builder: A :class:`~kubepulse.incident.timeline.RolloutTimelineBuilder`.
        pod_supervisor: A :class:`~kubepulse.index.pod_index.PodIndexSupervisor`,
            or None to disable the pod-watch endpoints.
    """
    from kubepulse import __version__

    app = FastAPI(
        title="kubepulse",
        version=__version__,
        description="Incident correlation views over a Kubernetes namespace.",
    )
    app.state.aggregator = aggregator
    app.state.timeline_builder = timeline_builder
    app.state.pod_supervisor = pod_supervisor

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in errors
        )
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_PARAMETER", detail=detail or "Invalid request.").model_dump(),
        )

    @app.get("/metrics", include_in_schema=False)
    async def _metrics() -> PlainTextResponse:
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router, prefix="/api/v1")
    return app
