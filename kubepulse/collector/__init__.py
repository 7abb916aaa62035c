"""Cluster change streams."""

from kubepulse.collector.pod_stream import PodWatchStream

__all__ = ["PodWatchStream"]
