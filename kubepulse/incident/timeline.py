"""Rollout timeline reconstruction from ReplicaSet generations."""

from __future__ import annotations

import asyncio

from kubepulse.cluster.reader import ClusterReader
from kubepulse.models.incident import ReplicaSetSnapshot, RolloutStep, RolloutTimeline
from kubepulse.models.resources import ReplicaGeneration, ResourceKind
from kubepulse.observability.logging import get_logger, namespace_context
from kubepulse.ownership.resolver import group_generations_by_deployment

_log = get_logger("incident.timeline")


def snapshot_of(generation: ReplicaGeneration) -> ReplicaSetSnapshot:
    return ReplicaSetSnapshot(
        name=generation.name,
        revision=generation.revision,
        replicas=generation.replicas,
        ready=generation.ready_replicas,
        image=generation.image,
    )


def _step_order(step: RolloutStep) -> tuple[bool, float]:
    # Undated steps (the deployment event lane) come first.
    if step.timestamp is None:
        return (False, 0.0)
    return (True, step.timestamp.timestamp())


class RolloutTimelineBuilder:
    """Reconstructs how a Deployment's rollouts progressed.

    Steps are built from two sources: events scoped to the Deployment
    itself, which carry no timestamp, and one step per ReplicaSet
    generation.  Generations are ordered by revision; each step links the
    previous generation as ``old_rs``.
    """

    def __init__(self, reader: ClusterReader) -> None:
        self._reader = reader

    async def build(self, namespace: str, deployment_name: str) -> RolloutTimeline:
        with namespace_context(namespace, "build_rollout_timeline"):
            generations, deployment_events = await asyncio.gather(
                self._reader.list_replica_generations(namespace),
                self._reader.fetch_events_for(namespace, deployment_name, ResourceKind.DEPLOYMENT),
            )
            owned = group_generations_by_deployment(generations).get(deployment_name, [])

            steps: list[RolloutStep] = [
                RolloutStep(
                    timestamp=None,
                    step_type=f"deployment:{event.reason}",
                    description=event.message,
                    events=[event],
                )
                for event in deployment_events
            ]

            generation_events = await asyncio.gather(
                *(self._reader.fetch_events_for(namespace, gen.name, ResourceKind.REPLICA_SET) for gen in owned)
            )
            previous: ReplicaSetSnapshot | None = None
            for gen, events in zip(owned, generation_events, strict=True):
                current = snapshot_of(gen)
                revision = gen.revision if gen.revision is not None else "?"
                steps.append(
                    RolloutStep(
                        timestamp=gen.created_at,
                        step_type=f"revision:{revision}",
                        description=f"ReplicaSet {gen.name} (rev {revision}) image: {gen.image or ''}",
                        old_rs=previous,
                        new_rs=current,
                        events=list(events),
                    )
                )
                previous = current

            steps.sort(key=_step_order)
            _log.debug("rollout_timeline_built", deployment=deployment_name, steps=len(steps))
            return RolloutTimeline(deployment_name=deployment_name, steps=steps)
