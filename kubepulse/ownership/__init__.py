"""Ownership resolution from pods and ReplicaSets to top-level workloads."""

from kubepulse.ownership.resolver import (
    GenerationIndex,
    WorkloadRef,
    build_generation_index,
    group_generations_by_deployment,
    resolve_owner,
)

__all__ = [
    "GenerationIndex",
    "WorkloadRef",
    "build_generation_index",
    "group_generations_by_deployment",
    "resolve_owner",
]
