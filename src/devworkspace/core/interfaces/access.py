"""Access control, workload identity and mount discovery interfaces."""

from abc import ABC, abstractmethod

from devworkspace.core.domain.workspace import DevWorkspaceTemplate, Workspace
from devworkspace.core.interfaces.devfile import PodAdditions
from devworkspace.core.operator_config import OperatorConfig


class AccessController(ABC):
    """Interface for RBAC synchronization (roles and bindings)."""

    @abstractmethod
    async def sync(self, workspace: Workspace) -> None:
        ...

    @abstractmethod
    async def finalize(self, workspace: Workspace) -> None:
        """Remove this workspace from shared RBAC objects."""
        ...


class IdentitySynchronizer(ABC):
    """Interface for the workspace service account."""

    @abstractmethod
    async def sync(self, workspace: Workspace, config: OperatorConfig) -> str:
        """Ensure the service account exists.

        Returns:
            Service account name to run the workload as
        """
        ...

    @abstractmethod
    async def finalize(self, workspace: Workspace) -> bool:
        """Legacy service-account cleanup.

        Returns:
            True if another pass is needed before the finalizer can go
        """
        ...


class MountDiscovery(ABC):
    """Interface for auto-discovered mounts and pull secrets."""

    @abstractmethod
    async def automount(
        self, workspace: Workspace, template: DevWorkspaceTemplate
    ) -> PodAdditions:
        """Secrets/configmaps labelled for mounting into workspaces."""
        ...

    @abstractmethod
    async def pull_secrets(self, workspace: Workspace, service_account: str) -> PodAdditions:
        ...
