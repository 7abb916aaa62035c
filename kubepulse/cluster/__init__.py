"""Cluster API access: the reader protocol, its kubernetes_asyncio implementation and raw parsers."""

from kubepulse.cluster.reader import ClusterAPIError, ClusterReader, KubernetesClusterReader

__all__ = ["ClusterAPIError", "ClusterReader", "KubernetesClusterReader"]
