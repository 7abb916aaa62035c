"""Recent-change detectors.

Each detector is a pure function over already-listed cluster state and
returns :class:`ChangeEvent` objects.  The aggregator does the I/O and
hands the results to :func:`merge_changes`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

from kubepulse.cluster.parsers import parse_timestamp
from kubepulse.models.incident import (
    ChangeEvent,
    ChangeType,
    Generic,
    HPAScale,
    ImageUpdate,
    NewReplicaSet,
    Restart,
)
from kubepulse.models.resources import (
    Autoscaler,
    EventInfo,
    NamespaceEvent,
    ReplicaGeneration,
    ResourceKind,
    Workload,
)
from kubepulse.ownership.resolver import group_generations_by_deployment

RESCALE_REASON = "SuccessfulRescale"
SCALING_REASON = "ScalingReplicaSet"


def detect_generation_changes(
    generations: Iterable[ReplicaGeneration],
    cutoff: datetime,
) -> list[ChangeEvent]:
    """One change per Deployment whose newest generation was created at or after *cutoff*.

    The change is an ImageUpdate when the previous generation had a
    different, known image; otherwise a NewReplicaSet.
    """
    changes: list[ChangeEvent] = []
    for deployment, group in group_generations_by_deployment(generations).items():
        newest = group[-1]
        if newest.created_at is None or newest.created_at < cutoff:
            continue

        new_image = newest.image or ""
        old_image = group[-2].image if len(group) >= 2 else None

        if old_image and old_image != new_image:
            changes.append(
                ChangeEvent(
                    timestamp=newest.created_at,
                    change_type=ChangeType.IMAGE_UPDATE,
                    resource_kind=ResourceKind.DEPLOYMENT,
                    resource_name=deployment,
                    description=f"Image updated: {old_image} -> {new_image}",
                    details=ImageUpdate(old_image=old_image, new_image=new_image, revision=newest.revision),
                )
            )
            continue

        revision = newest.revision if newest.revision is not None else "?"
        changes.append(
            ChangeEvent(
                timestamp=newest.created_at,
                change_type=ChangeType.NEW_REPLICA_SET,
                resource_kind=ResourceKind.DEPLOYMENT,
                resource_name=deployment,
                description=f"New ReplicaSet (rev {revision}): {new_image}",
                details=NewReplicaSet(name=newest.name, revision=newest.revision, image=newest.image),
            )
        )
    return changes


def detect_restarts(workloads: Iterable[Workload], cutoff: datetime) -> list[ChangeEvent]:
    """Deployments whose restart annotation is a valid timestamp at or after *cutoff*."""
    changes: list[ChangeEvent] = []
    for workload in workloads:
        if workload.restart_annotation is None:
            continue
        restarted_at = parse_timestamp(workload.restart_annotation)
        if restarted_at is None or restarted_at < cutoff:
            continue
        changes.append(
            ChangeEvent(
                timestamp=restarted_at,
                change_type=ChangeType.RESTART,
                resource_kind=ResourceKind.DEPLOYMENT,
                resource_name=workload.name,
                description=f"Deployment restarted at {workload.restart_annotation}",
                details=Restart(triggered_at=workload.restart_annotation),
            )
        )
    return changes


def detect_autoscaler_changes(
    autoscalers: Iterable[Autoscaler],
    events_by_name: Mapping[str, Sequence[EventInfo]],
) -> list[ChangeEvent]:
    """One HPAScale change per ``SuccessfulRescale`` event of each autoscaler."""
    changes: list[ChangeEvent] = []
    for hpa in autoscalers:
        for event in events_by_name.get(hpa.name, ()):
            if event.reason != RESCALE_REASON:
                continue
            changes.append(
                ChangeEvent(
                    timestamp=event.timestamp,
                    change_type=ChangeType.HPA_SCALE,
                    resource_kind=ResourceKind.HORIZONTAL_POD_AUTOSCALER,
                    resource_name=hpa.name,
                    description=event.message,
                    details=HPAScale(
                        current_replicas=hpa.current_replicas,
                        desired_replicas=hpa.desired_replicas,
                        metric_status=event.message,
                    ),
                )
            )
    return changes


def detect_scaling_events(events: Iterable[NamespaceEvent], cutoff: datetime) -> list[ChangeEvent]:
    """``ScalingReplicaSet`` events since *cutoff*.  Undated events are kept."""
    changes: list[ChangeEvent] = []
    for event in events:
        if event.reason != SCALING_REASON:
            continue
        if event.timestamp is not None and event.timestamp < cutoff:
            continue
        changes.append(
            ChangeEvent(
                timestamp=event.timestamp,
                change_type=ChangeType.SCALE_CHANGE,
                resource_kind=ResourceKind.DEPLOYMENT,
                resource_name=event.involved_name,
                description=event.message,
                details=Generic(info=event.message),
            )
        )
    return changes


def _newest_first_key(change: ChangeEvent) -> tuple[bool, float]:
    ts = change.timestamp
    return (ts is not None, ts.timestamp() if ts is not None else 0.0)


def merge_changes(*detected: Iterable[ChangeEvent]) -> list[ChangeEvent]:
    """Concatenate detector output, newest first, then drop repeated changes.

    Undated changes sort last.  Duplicates share (change_type,
    resource_name, description); the first one in sorted order is kept.
    """
    combined = [change for batch in detected for change in batch]
    combined.sort(key=_newest_first_key, reverse=True)

    seen: set[tuple[str, str, str]] = set()
    merged: list[ChangeEvent] = []
    for change in combined:
        if change.dedup_key in seen:
            continue
        seen.add(change.dedup_key)
        merged.append(change)
    return merged
