"""Cluster managed kind."""

from plugins.managed.cluster.external import ClusterClient, ClusterConnector

__all__ = ["ClusterClient", "ClusterConnector"]
