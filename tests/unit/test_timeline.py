"""Unit tests for kubepulse.incident.timeline.RolloutTimelineBuilder."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kubepulse.cluster.reader import ClusterAPIError
from kubepulse.incident.timeline import RolloutTimelineBuilder, snapshot_of
from kubepulse.models.resources import EventInfo, OwnerReference, ReplicaGeneration, ResourceKind

_T0 = datetime(2024, 1, 15, 9, 0, 0, tzinfo=UTC)


def _make_generation(
    name: str,
    revision: int | None,
    image: str | None,
    created: datetime | None,
    deployment: str = "web",
) -> ReplicaGeneration:
    return ReplicaGeneration(
        name=name,
        namespace="default",
        revision=revision,
        owner_references=(OwnerReference("Deployment", deployment),),
        replicas=2,
        ready_replicas=1,
        image=image,
        created_at=created,
    )


class TestRolloutTimeline:
    async def test_revisions_in_order_with_previous_snapshot(self, reader) -> None:
        gens = [
            _make_generation("web-c", 3, "web:3", _T0 + timedelta(hours=2)),
            _make_generation("web-a", 1, "web:1", _T0),
            _make_generation("web-b", 2, "web:2", _T0 + timedelta(hours=1)),
        ]
        reader.generations = gens
        timeline = await RolloutTimelineBuilder(reader).build("default", "web")

        assert timeline.deployment_name == "web"
        assert [s.step_type for s in timeline.steps] == ["revision:1", "revision:2", "revision:3"]
        assert timeline.steps[0].old_rs is None
        assert timeline.steps[1].old_rs == snapshot_of(gens[1])
        assert timeline.steps[2].old_rs == snapshot_of(gens[2])
        assert timeline.steps[2].new_rs == snapshot_of(gens[0])

    async def test_description_and_snapshot_fields(self, reader) -> None:
        reader.generations = [_make_generation("web-a", 4, "web:1", _T0)]
        [step] = (await RolloutTimelineBuilder(reader).build("default", "web")).steps
        assert step.description == "ReplicaSet web-a (rev 4) image: web:1"
        assert step.timestamp == _T0
        assert step.new_rs is not None
        assert (step.new_rs.replicas, step.new_rs.ready) == (2, 1)

    async def test_missing_revision_and_image(self, reader) -> None:
        reader.generations = [_make_generation("web-x", None, None, _T0)]
        [step] = (await RolloutTimelineBuilder(reader).build("default", "web")).steps
        assert step.step_type == "revision:?"
        assert step.description == "ReplicaSet web-x (rev ?) image: "

    async def test_other_deployments_are_ignored(self, reader) -> None:
        reader.generations = [
            _make_generation("web-a", 1, "web:1", _T0),
            _make_generation("api-a", 1, "api:1", _T0, deployment="api"),
        ]
        timeline = await RolloutTimelineBuilder(reader).build("default", "web")
        assert [s.new_rs.name for s in timeline.steps if s.new_rs] == ["web-a"]

    async def test_deployment_events_lead_the_timeline(self, reader) -> None:
        reader.generations = [_make_generation("web-a", 1, "web:1", _T0)]
        scaled = EventInfo("ScalingReplicaSet", "Scaled up web-a to 2", 1, "Normal", "3h", _T0)
        reader.events[(ResourceKind.DEPLOYMENT, "web")] = [scaled]
        rs_event = EventInfo("SuccessfulCreate", "Created pod web-a-1", 1, "Normal", "3h", _T0)
        reader.events[(ResourceKind.REPLICA_SET, "web-a")] = [rs_event]

        steps = (await RolloutTimelineBuilder(reader).build("default", "web")).steps
        assert [s.step_type for s in steps] == ["deployment:ScalingReplicaSet", "revision:1"]
        assert steps[0].timestamp is None
        assert steps[0].events == [scaled]
        assert steps[0].new_rs is None
        assert steps[1].events == [rs_event]

    async def test_unknown_deployment_gives_empty_timeline(self, reader) -> None:
        timeline = await RolloutTimelineBuilder(reader).build("default", "ghost")
        assert timeline.steps == []

    async def test_generation_listing_failure_propagates(self, reader) -> None:
        reader.fail.add("list_replica_generations")
        with pytest.raises(ClusterAPIError):
            await RolloutTimelineBuilder(reader).build("default", "web")
