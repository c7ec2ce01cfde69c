"""Cluster access and endpoint resolution."""

from k10ls.cluster.client import ClusterClient, KubeClusterClient, create_cluster_client
from k10ls.cluster.resolver import EndpointResolver, ResolvedEndpoint, format_selector

__all__ = [
    "ClusterClient",
    "KubeClusterClient",
    "create_cluster_client",
    "EndpointResolver",
    "ResolvedEndpoint",
    "format_selector",
]
