"""Attribute pods and ReplicaSet generations to their top-level workload.

Owner references only ever point one level up, so a pod created by a
Deployment names a ReplicaSet as its owner.  The generation index maps each
ReplicaSet back to its Deployment; it is rebuilt wholesale from a listing
and never mutated afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from kubepulse.models.resources import OwnerReference, Pod, ReplicaGeneration, ResourceKind

# Owner kinds that decide attribution; anything else is skipped.
_RECOGNISED_OWNER_KINDS: frozenset[str] = frozenset(
    {
        ResourceKind.REPLICA_SET,
        ResourceKind.STATEFUL_SET,
        ResourceKind.DAEMON_SET,
        ResourceKind.JOB,
    }
)

GenerationIndex = Mapping[str, str]


@dataclass(frozen=True)
class WorkloadRef:
    kind: ResourceKind
    name: str


def build_generation_index(generations: Iterable[ReplicaGeneration]) -> GenerationIndex:
    """Map generation name -> owning Deployment name.

    The first owner reference of kind Deployment wins.  Generations with no
    Deployment owner are absent from the index.
    """
    index: dict[str, str] = {}
    for gen in generations:
        for ref in gen.owner_references:
            if ref.kind == ResourceKind.DEPLOYMENT:
                index[gen.name] = ref.name
                break
    return MappingProxyType(index)


def resolve_owner(
    owner: Pod | Sequence[OwnerReference],
    index: GenerationIndex,
) -> WorkloadRef | None:
    """Resolve the workload a pod belongs to.

    The first owner reference, in declaration order, whose kind is
    ReplicaSet, StatefulSet, DaemonSet or Job decides.  A ReplicaSet
    resolves to its Deployment when the index knows it, otherwise to the
    ReplicaSet itself.  Returns None when no reference is recognised.
    """
    refs = owner.owner_references if isinstance(owner, Pod) else owner
    for ref in refs:
        if ref.kind not in _RECOGNISED_OWNER_KINDS:
            continue
        if ref.kind == ResourceKind.REPLICA_SET:
            deployment = index.get(ref.name)
            if deployment is not None:
                return WorkloadRef(ResourceKind.DEPLOYMENT, deployment)
            return WorkloadRef(ResourceKind.REPLICA_SET, ref.name)
        return WorkloadRef(ResourceKind(ref.kind), ref.name)
    return None


def deployment_owner(generation: ReplicaGeneration) -> str | None:
    """Name of the Deployment that owns *generation*, if any."""
    for ref in generation.owner_references:
        if ref.kind == ResourceKind.DEPLOYMENT:
            return ref.name
    return None


def generation_sort_key(generation: ReplicaGeneration) -> tuple[int, bool, float, str]:
    """Revision ascending (missing as 0), then creation time, then name."""
    created = generation.created_at
    return (
        generation.sort_revision,
        created is not None,
        created.timestamp() if created is not None else 0.0,
        generation.name,
    )


def group_generations_by_deployment(
    generations: Iterable[ReplicaGeneration],
) -> dict[str, list[ReplicaGeneration]]:
    """Group generations under their owning Deployment, each group revision-ascending."""
    groups: dict[str, list[ReplicaGeneration]] = {}
    for gen in generations:
        owner = deployment_owner(gen)
        if owner is not None:
            groups.setdefault(owner, []).append(gen)
    for group in groups.values():
        group.sort(key=generation_sort_key)
    return groups
