"""Collaborator interfaces for the reconciler."""

from dataclasses import dataclass

from devworkspace.core.interfaces.access import (
    AccessController,
    IdentitySynchronizer,
    MountDiscovery,
)
from devworkspace.core.interfaces.cluster import ClusterClient, ObjectKind, OwnedObject
from devworkspace.core.interfaces.devfile import (
    DevfileResolver,
    FlattenResult,
    PodAdditions,
    TemplateProcessor,
)
from devworkspace.core.interfaces.health import HealthProbe, HealthResult
from devworkspace.core.interfaces.metrics import MetricsSink
from devworkspace.core.interfaces.routing import (
    ExposedEndpoint,
    RoutingResult,
    RoutingSynchronizer,
)
from devworkspace.core.interfaces.storage import StorageProvisioner, StorageResolver
from devworkspace.core.interfaces.workload import (
    MetadataProvisioner,
    SubResourceSynchronizer,
    WorkloadSpec,
    WorkloadSynchronizer,
)


@dataclass
class Collaborators:
    """Collaborators constructed once at startup and shared by all passes."""

    cluster: ClusterClient
    resolver: DevfileResolver
    templates: TemplateProcessor
    storage: StorageResolver
    access: AccessController
    identity: IdentitySynchronizer
    mounts: MountDiscovery
    routing: RoutingSynchronizer
    metadata: MetadataProvisioner
    sub_resources: SubResourceSynchronizer
    workload: WorkloadSynchronizer
    health: HealthProbe
    metrics: MetricsSink


__all__ = [
    "Collaborators",
    # Cluster
    "ClusterClient",
    "ObjectKind",
    "OwnedObject",
    # Devfile
    "DevfileResolver",
    "FlattenResult",
    "PodAdditions",
    "TemplateProcessor",
    # Provisioning
    "StorageProvisioner",
    "StorageResolver",
    "AccessController",
    "IdentitySynchronizer",
    "MountDiscovery",
    "RoutingSynchronizer",
    "RoutingResult",
    "ExposedEndpoint",
    "MetadataProvisioner",
    "SubResourceSynchronizer",
    "WorkloadSynchronizer",
    "WorkloadSpec",
    # Observability
    "HealthProbe",
    "HealthResult",
    "MetricsSink",
]
