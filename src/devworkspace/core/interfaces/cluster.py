"""Cluster API interface used by the reconciler."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from devworkspace.core.domain.workspace import OwnerReference, Workspace


class ObjectKind(StrEnum):
    """Kinds the controller lists or deletes directly."""

    DEPLOYMENT = "Deployment"
    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    ROUTING = "DevWorkspaceRouting"
    POD = "Pod"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"


@dataclass
class OwnedObject:
    """Minimal view of a namespaced object and its owners."""

    kind: str
    name: str
    namespace: str
    owners: list[OwnerReference] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def owner_uids(self) -> list[str]:
        return [owner.uid for owner in self.owners]


class ClusterClient(ABC):
    """Interface for reading and writing cluster objects.

    Implementations: KubernetesClusterClient

    Writes raise ConflictError on a stale resourceVersion and NotFoundError
    when the object is gone.
    """

    @abstractmethod
    async def get_workspace(self, namespace: str, name: str) -> Workspace | None:
        """Fetch a workspace.

        Returns:
            The workspace, or None if it does not exist
        """
        ...

    @abstractmethod
    async def list_workspaces(self, namespace: str) -> list[Workspace]:
        ...

    @abstractmethod
    async def update_workspace(self, workspace: Workspace) -> Workspace:
        """Write metadata (annotations, finalizers) and spec.

        Returns:
            The stored workspace (new resourceVersion)
        """
        ...

    @abstractmethod
    async def update_status(self, workspace: Workspace) -> Workspace:
        """Write the status sub-resource.

        Returns:
            The stored workspace (new resourceVersion)
        """
        ...

    @abstractmethod
    async def patch_started(self, workspace: Workspace, started: bool) -> None:
        """Merge-patch spec.started without a resourceVersion check."""
        ...

    @abstractmethod
    async def is_namespace_terminating(self, namespace: str) -> bool:
        ...

    @abstractmethod
    async def list_objects(
        self, kind: ObjectKind, namespace: str, labels: dict[str, str]
    ) -> list[OwnedObject]:
        """List objects of a kind matching all given labels."""
        ...

    @abstractmethod
    async def delete_object(self, kind: ObjectKind, namespace: str, name: str) -> None:
        """Delete an object (background propagation)."""
        ...

    @abstractmethod
    async def get_operator_config(
        self, namespace: str, name: str
    ) -> dict[str, Any] | None:
        """Fetch a DevWorkspaceOperatorConfig body (None if missing)."""
        ...
