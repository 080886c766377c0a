"""Devfile resolution and pod-template contribution interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from devworkspace.core.domain.workspace import DevWorkspaceTemplate, Workspace
from devworkspace.core.operator_config import OperatorConfig


@dataclass
class PodAdditions:
    """Containers, volumes and env contributed by one provisioning step."""

    containers: list[dict[str, Any]] = field(default_factory=list)
    init_containers: list[dict[str, Any]] = field(default_factory=list)
    volumes: list[dict[str, Any]] = field(default_factory=list)
    volume_mounts: list[dict[str, Any]] = field(default_factory=list)
    env: list[dict[str, Any]] = field(default_factory=list)
    pull_secrets: list[dict[str, Any]] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.containers
            or self.init_containers
            or self.volumes
            or self.volume_mounts
            or self.env
            or self.pull_secrets
            or self.annotations
            or self.labels
        )


@dataclass
class FlattenResult:
    """Flattened template plus non-fatal resolution warnings."""

    template: DevWorkspaceTemplate
    warnings: list[str] = field(default_factory=list)


class DevfileResolver(ABC):
    """Interface for devfile flattening and validation.

    Validation failures raise FailError (BadRequest).
    """

    @abstractmethod
    async def flatten(self, workspace: Workspace) -> FlattenResult:
        """Resolve parent/plugin references and contributions."""
        ...

    @abstractmethod
    async def validate_components(self, template: DevWorkspaceTemplate) -> None:
        ...

    @abstractmethod
    async def validate_projects(self, template: DevWorkspaceTemplate) -> None:
        ...


class TemplateProcessor(ABC):
    """Interface for turning a flattened template into pod additions."""

    @abstractmethod
    async def add_persistent_home(
        self, workspace: Workspace, template: DevWorkspaceTemplate
    ) -> DevWorkspaceTemplate:
        """Return template with a persistent /home/user volume injected."""
        ...

    @abstractmethod
    async def component_additions(
        self, workspace: Workspace, template: DevWorkspaceTemplate
    ) -> PodAdditions:
        """Containers, volumes and env declared by devfile components."""
        ...

    @abstractmethod
    async def environment(
        self, workspace: Workspace, template: DevWorkspaceTemplate
    ) -> list[dict[str, Any]]:
        """Common and devfile-declared environment variables."""
        ...

    @abstractmethod
    async def project_clone(
        self, workspace: Workspace, template: DevWorkspaceTemplate, config: OperatorConfig
    ) -> PodAdditions | None:
        """Project clone (or restore) init container, if projects exist."""
        ...

    @abstractmethod
    async def identity_token_mounts(
        self, workspace: Workspace, template: DevWorkspaceTemplate
    ) -> PodAdditions | None:
        ...

    @abstractmethod
    async def annotate_endpoints(
        self,
        template: DevWorkspaceTemplate,
        exposed_endpoints: dict[str, list[Any]],
    ) -> DevWorkspaceTemplate:
        """Write resolved endpoint URLs back onto the template components."""
        ...
