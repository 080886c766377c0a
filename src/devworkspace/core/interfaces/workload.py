"""Workload (deployment), metadata and sub-resource interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from devworkspace.core.domain.workspace import DevWorkspaceTemplate, Workspace
from devworkspace.core.interfaces.devfile import PodAdditions
from devworkspace.core.operator_config import OperatorConfig


@dataclass
class WorkloadSpec:
    """Everything the pipeline contributed to the workspace pod."""

    template: DevWorkspaceTemplate
    additions: list[PodAdditions] = field(default_factory=list)
    service_account: str = ""


class WorkloadSynchronizer(ABC):
    """Interface for the workspace deployment."""

    @abstractmethod
    async def sync(
        self, workspace: Workspace, spec: WorkloadSpec, config: OperatorConfig
    ) -> None:
        """Create or update the deployment.

        Raises RetryError until the deployment is available, FailError when
        the pod hits an unrecoverable event.
        """
        ...

    @abstractmethod
    async def scale_to_zero(self, workspace: Workspace) -> bool:
        """Scale the deployment down.

        Returns:
            True once no replicas remain (or the deployment is gone)
        """
        ...

    @abstractmethod
    async def delete(self, workspace: Workspace) -> bool:
        """Delete the deployment.

        Returns:
            True while deletion is still in progress
        """
        ...


class MetadataProvisioner(ABC):
    @abstractmethod
    async def provision(
        self,
        workspace: Workspace,
        original: DevWorkspaceTemplate,
        flattened: DevWorkspaceTemplate,
    ) -> PodAdditions:
        """Store original and flattened templates; return the mount for them."""
        ...


class SubResourceSynchronizer(ABC):
    @abstractmethod
    async def sync(self, workspace: Workspace, template: DevWorkspaceTemplate) -> None:
        """Apply cluster-native objects declared as devfile components."""
        ...
