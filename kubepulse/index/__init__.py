"""Live pod index driven by a pod change stream."""

from kubepulse.index.pod_index import LivePodIndex, PodIndexState, PodIndexSupervisor

__all__ = ["LivePodIndex", "PodIndexState", "PodIndexSupervisor"]
