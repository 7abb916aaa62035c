"""Incident views: unhealthy workloads, recent changes, saturation, routes and rollout timelines."""

from kubepulse.incident.aggregator import IncidentAggregator
from kubepulse.incident.timeline import RolloutTimelineBuilder

__all__ = ["IncidentAggregator", "RolloutTimelineBuilder"]
