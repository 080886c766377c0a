"""Concrete collaborators backed by external systems."""

from devworkspace.adapters.cluster import ClusterWatcher, KubernetesClusterClient
from devworkspace.adapters.health import HttpxHealthProbe
from devworkspace.adapters.metrics import PrometheusMetricsSink

__all__ = [
    "ClusterWatcher",
    "HttpxHealthProbe",
    "KubernetesClusterClient",
    "PrometheusMetricsSink",
]
