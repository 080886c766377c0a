"""Storage provisioning interfaces."""

from abc import ABC, abstractmethod

from devworkspace.core.domain.workspace import DevWorkspaceTemplate, Workspace
from devworkspace.core.interfaces.devfile import PodAdditions
from devworkspace.core.operator_config import OperatorConfig


class StorageProvisioner(ABC):
    """Interface for one storage strategy (common, per-workspace, ephemeral...).

    provision() and cleanup() raise RetryError while waiting on the cluster
    and FailError for unrecoverable problems.
    """

    @abstractmethod
    def needs_storage(self, template: DevWorkspaceTemplate) -> bool:
        ...

    @abstractmethod
    async def provision(
        self,
        workspace: Workspace,
        template: DevWorkspaceTemplate,
        additions: list[PodAdditions],
        config: OperatorConfig,
    ) -> PodAdditions:
        """Provision storage and return the volumes to mount."""
        ...

    @abstractmethod
    async def cleanup(self, workspace: Workspace, config: OperatorConfig) -> None:
        """Remove workspace data from storage (finalizer step)."""
        ...


class StorageResolver(ABC):
    """Selects the storage strategy for a workspace."""

    @abstractmethod
    def resolve(self, workspace: Workspace) -> StorageProvisioner:
        """Raises FailError for an unsupported storage type."""
        ...
