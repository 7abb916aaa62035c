"""Incident aggregation engine.

Correlates workloads, pods, ReplicaSet generations, autoscalers, events and
ingress rules of one namespace into the incident views.  Every call reads
current state through a :class:`~kubepulse.cluster.reader.ClusterReader`
and recomputes from scratch; nothing is retained between calls.

Failure handling:
    - Listing failures of workloads, pods, generations and namespace events
      propagate as :class:`~kubepulse.cluster.reader.ClusterAPIError`.
    - Scoped event lookups never fail; the reader degrades them to ``[]``.
    - Autoscaler and ingress listings are optional sources: a failure is
      logged and treated as an empty set.
    - The incident summary is all-or-nothing.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from kubepulse.cluster.reader import ClusterAPIError, ClusterReader
from kubepulse.incident.changes import (
    detect_autoscaler_changes,
    detect_generation_changes,
    detect_restarts,
    detect_scaling_events,
    merge_changes,
)
from kubepulse.models.incident import (
    AffectedRoute,
    ChangeEvent,
    IncidentSummary,
    PodSaturationInfo,
    UnhealthyWorkload,
    WorkloadSaturation,
)
from kubepulse.models.resources import (
    WORKLOAD_KINDS,
    Autoscaler,
    EventInfo,
    IngressRoute,
    NamespaceEvent,
    Pod,
    ResourceKind,
    Workload,
)
from kubepulse.observability.logging import get_logger, namespace_context
from kubepulse.observability.metrics import (
    aggregation_duration_seconds,
    aggregation_requests_total,
    changes_detected_total,
    optional_source_failures_total,
)
from kubepulse.ownership.resolver import WorkloadRef, build_generation_index, resolve_owner

_log = get_logger("incident.aggregator")

_T = TypeVar("_T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_WAITING_ERROR_REASONS: frozenset[str] = frozenset(
    {
        "CrashLoopBackOff",
        "Error",
        "ImagePullBackOff",
        "ErrImagePull",
        "CreateContainerConfigError",
    }
)
_TERMINATED_ERROR_REASONS: frozenset[str] = frozenset({"Error", "OOMKilled"})

# A pod of an otherwise healthy workload is reported above this many restarts.
_UNHEALTHY_RESTART_THRESHOLD = 5
# A workload is saturated above this many restarts across its pods.
_SATURATION_RESTART_THRESHOLD = 3

# Only these kinds contribute replica counts to saturation entries.
_SATURATION_COUNT_KINDS: tuple[ResourceKind, ...] = (ResourceKind.DEPLOYMENT, ResourceKind.STATEFUL_SET)

SUMMARY_CHANGES_MINUTES = 15
SUMMARY_EVENTS_MINUTES = 30


@contextmanager
def _track(operation: str) -> Iterator[None]:
    """Record duration and outcome of one aggregation operation."""
    start = time.monotonic()
    outcome = "error"
    try:
        yield
        outcome = "success"
    finally:
        aggregation_duration_seconds.labels(operation=operation).observe(time.monotonic() - start)
        aggregation_requests_total.labels(operation=operation, outcome=outcome).inc()


def pod_errors(pod: Pod) -> list[str]:
    """Reason codes of a pod's failing containers, formatted ``pod: reason``."""
    errors: list[str] = []
    for cs in pod.container_statuses:
        if cs.waiting_reason in _WAITING_ERROR_REASONS:
            errors.append(f"{pod.name}: {cs.waiting_reason}")
        if cs.terminated_reason in _TERMINATED_ERROR_REASONS:
            errors.append(f"{pod.name}: {cs.terminated_reason}")
    return errors


def route_matches(backend_service: str, workload_name: str) -> bool:
    """Name heuristic linking a Service to a workload: equal, or either a prefix of the other."""
    return backend_service.startswith(workload_name) or workload_name.startswith(backend_service)


def _cutoff(since_minutes: int, now: datetime | None = None) -> datetime:
    return (now or datetime.now(tz=UTC)) - timedelta(minutes=since_minutes)


class IncidentAggregator:
    """Builds the per-namespace incident views.

    Usage::

        aggregator = IncidentAggregator(KubernetesClusterReader(api_client))
        summary = await aggregator.get_incident_summary("payments")
    """

    def __init__(
        self,
        reader: ClusterReader,
        changes_minutes: int = SUMMARY_CHANGES_MINUTES,
        events_minutes: int = SUMMARY_EVENTS_MINUTES,
    ) -> None:
        self._reader = reader
        self._changes_minutes = changes_minutes
        self._events_minutes = events_minutes

    # ------------------------------------------------------------------
    # Unhealthy workloads
    # ------------------------------------------------------------------

    async def find_unhealthy_workloads(self, namespace: str) -> list[UnhealthyWorkload]:
        """Workloads failing readiness plus workloads whose pods are failing.

        Each workload appears at most once.  Ordered by severity descending,
        ties broken by name.
        """
        with _track("find_unhealthy_workloads"), namespace_context(namespace, "find_unhealthy_workloads"):
            listings = await asyncio.gather(*(self._reader.list_workloads(namespace, kind) for kind in WORKLOAD_KINDS))

            entries: dict[WorkloadRef, UnhealthyWorkload] = {}
            for workloads in listings:
                for workload in workloads:
                    if workload.healthy:
                        continue
                    entries[WorkloadRef(workload.kind, workload.name)] = UnhealthyWorkload(
                        name=workload.name,
                        kind=workload.kind,
                        ready_replicas=workload.ready_replicas,
                        desired_replicas=workload.desired_replicas,
                    )

            pods, generations = await asyncio.gather(
                self._reader.list_pods(namespace),
                self._reader.list_replica_generations(namespace),
            )
            index = build_generation_index(generations)

            for pod in pods:
                ref = resolve_owner(pod, index)
                if ref is None:
                    continue
                errors = pod_errors(pod)
                restarts = pod.restart_count
                entry = entries.get(ref)
                if entry is not None:
                    entry.restart_count += restarts
                    entry.pod_errors.extend(errors)
                elif restarts > _UNHEALTHY_RESTART_THRESHOLD or errors:
                    entries[ref] = UnhealthyWorkload(
                        name=ref.name,
                        kind=ref.kind,
                        ready_replicas=None,
                        desired_replicas=None,
                        restart_count=restarts,
                        pod_errors=errors,
                    )

            refs = list(entries)
            event_lists = await asyncio.gather(
                *(self._reader.fetch_events_for(namespace, ref.name, ref.kind) for ref in refs)
            )
            for ref, events in zip(refs, event_lists, strict=True):
                entries[ref].events = list(events)

            result = sorted(entries.values(), key=lambda w: (-w.severity, w.name))
            _log.debug("unhealthy_workloads_found", count=len(result))
            return result

    # ------------------------------------------------------------------
    # Recent changes
    # ------------------------------------------------------------------

    async def detect_recent_changes(self, namespace: str, since_minutes: int) -> list[ChangeEvent]:
        """Changes within the last *since_minutes*, newest first, deduplicated."""
        with _track("detect_recent_changes"), namespace_context(namespace, "detect_recent_changes"):
            cutoff = _cutoff(since_minutes)

            generations, deployments, autoscalers, events = await asyncio.gather(
                self._reader.list_replica_generations(namespace),
                self._reader.list_workloads(namespace, ResourceKind.DEPLOYMENT),
                self._optional(namespace, "autoscalers", self._reader.list_autoscalers(namespace)),
                self._reader.list_namespace_events(namespace),
            )
            hpa_events = await self._autoscaler_events(namespace, autoscalers)

            changes = merge_changes(
                detect_generation_changes(generations, cutoff),
                detect_restarts(deployments, cutoff),
                detect_autoscaler_changes(autoscalers, hpa_events),
                detect_scaling_events(events, cutoff),
            )
            for change in changes:
                changes_detected_total.labels(change_type=change.change_type.value).inc()
            _log.debug("recent_changes_detected", count=len(changes), since_minutes=since_minutes)
            return changes

    async def _autoscaler_events(
        self, namespace: str, autoscalers: Sequence[Autoscaler]
    ) -> dict[str, list[EventInfo]]:
        event_lists = await asyncio.gather(
            *(
                self._reader.fetch_events_for(namespace, hpa.name, ResourceKind.HORIZONTAL_POD_AUTOSCALER)
                for hpa in autoscalers
            )
        )
        return {hpa.name: list(events) for hpa, events in zip(autoscalers, event_lists, strict=True)}

    # ------------------------------------------------------------------
    # Saturation
    # ------------------------------------------------------------------

    async def get_workload_saturation(self, namespace: str) -> list[WorkloadSaturation]:
        """Workloads missing ready replicas or restarting heavily, worst first."""
        with _track("get_workload_saturation"), namespace_context(namespace, "get_workload_saturation"):
            pods, generations, *count_listings = await asyncio.gather(
                self._reader.list_pods(namespace),
                self._reader.list_replica_generations(namespace),
                *(self._reader.list_workloads(namespace, kind) for kind in _SATURATION_COUNT_KINDS),
            )

            counts: dict[WorkloadRef, Workload] = {}
            for workloads in count_listings:
                for workload in workloads:
                    counts[WorkloadRef(workload.kind, workload.name)] = workload

            index = build_generation_index(generations)
            grouped: dict[WorkloadRef, list[PodSaturationInfo]] = {}
            for pod in pods:
                ref = resolve_owner(pod, index)
                if ref is None:
                    continue
                grouped.setdefault(ref, []).append(
                    PodSaturationInfo(
                        name=pod.name,
                        status=pod.phase or "Unknown",
                        restarts=pod.restart_count,
                        requests_cpu=pod.resources.requests_cpu,
                        requests_memory=pod.resources.requests_memory,
                        limits_cpu=pod.resources.limits_cpu,
                        limits_memory=pod.resources.limits_memory,
                    )
                )

            results: list[WorkloadSaturation] = []
            for ref, pod_infos in grouped.items():
                workload = counts.get(ref)
                entry = WorkloadSaturation(
                    workload_name=ref.name,
                    workload_kind=ref.kind,
                    desired_replicas=workload.desired_replicas if workload else None,
                    ready_replicas=workload.ready_replicas if workload else None,
                    pods=pod_infos,
                )
                if entry.missing_replicas > 0 or entry.total_restarts > _SATURATION_RESTART_THRESHOLD:
                    results.append(entry)

            results.sort(key=lambda s: (-s.score, s.workload_name))
            return results

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def find_affected_routes(self, namespace: str, unhealthy_names: Sequence[str]) -> list[AffectedRoute]:
        """Ingress paths whose backend Service name matches an unhealthy workload.

        Matching is by name only (see :func:`route_matches`), so it can both
        miss and over-report.
        """
        with _track("find_affected_routes"), namespace_context(namespace, "find_affected_routes"):
            if not unhealthy_names:
                return []
            routes: list[IngressRoute] = await self._optional(
                namespace, "ingresses", self._reader.list_ingress_routes(namespace)
            )
            return [
                AffectedRoute(
                    route_type=ResourceKind.INGRESS.value,
                    route_name=route.ingress_name,
                    hosts=[route.host],
                    paths=[route.path],
                    backend_service=route.backend_service,
                    backend_healthy=False,
                )
                for route in routes
                if any(route_matches(route.backend_service, name) for name in unhealthy_names)
            ]

    # ------------------------------------------------------------------
    # Namespace events
    # ------------------------------------------------------------------

    async def fetch_namespace_events(self, namespace: str, since_minutes: int | None = None) -> list[NamespaceEvent]:
        """All namespace events, newest first.

        With *since_minutes*, events older than the cutoff are dropped;
        undated events are always kept and sort last.
        """
        with _track("fetch_namespace_events"), namespace_context(namespace, "fetch_namespace_events"):
            events = await self._reader.list_namespace_events(namespace)
            if since_minutes is not None:
                cutoff = _cutoff(since_minutes)
                events = [e for e in events if e.timestamp is None or e.timestamp >= cutoff]
            return sorted(
                events,
                key=lambda e: (e.timestamp is not None, e.timestamp.timestamp() if e.timestamp else 0.0),
                reverse=True,
            )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def get_incident_summary(self, namespace: str) -> IncidentSummary:
        """Run the four incident views concurrently and correlate routes.

        If any view fails, the others are cancelled and the error propagates;
        no partial summary is returned.
        """
        with _track("get_incident_summary"), namespace_context(namespace, "get_incident_summary"):
            tasks: list[asyncio.Task] = [
                asyncio.create_task(self.find_unhealthy_workloads(namespace)),
                asyncio.create_task(self.detect_recent_changes(namespace, self._changes_minutes)),
                asyncio.create_task(self.fetch_namespace_events(namespace, self._events_minutes)),
                asyncio.create_task(self.get_workload_saturation(namespace)),
            ]
            try:
                unhealthy, changes, events, saturation = await asyncio.gather(*tasks)
            except Exception as exc:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                _log.error("incident_summary_failed", error=str(exc))
                raise

            routes = await self.find_affected_routes(namespace, [w.name for w in unhealthy])
            return IncidentSummary(
                unhealthy_workloads=unhealthy,
                recent_changes=changes,
                error_events=[e for e in events if e.event_type == "Warning"],
                saturation=saturation,
                affected_routes=routes,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _optional(self, namespace: str, source: str, listing: Awaitable[list[_T]]) -> list[_T]:
        """Await an optional listing, substituting ``[]`` for a cluster API failure."""
        try:
            return await listing
        except ClusterAPIError as exc:
            _log.warning("optional_source_unavailable", namespace=namespace, source=source, error=str(exc))
            optional_source_failures_total.labels(kind=source).inc()
            return []
