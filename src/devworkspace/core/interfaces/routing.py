"""Network routing interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from devworkspace.core.domain.workspace import DevWorkspaceTemplate, Workspace
from devworkspace.core.interfaces.devfile import PodAdditions

MAIN_ENDPOINT_TYPE = "main"


@dataclass
class ExposedEndpoint:
    name: str
    url: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class RoutingResult:
    """Routing synchronization result.

    ready is False while the routing object is still being reconciled;
    status_message then explains what is pending.
    """

    ready: bool
    pod_additions: PodAdditions | None = None
    exposed_endpoints: dict[str, list[ExposedEndpoint]] = field(default_factory=dict)
    status_message: str = ""

    def main_url(self) -> str:
        """URL of the first endpoint marked as the main endpoint."""
        for endpoints in self.exposed_endpoints.values():
            for endpoint in endpoints:
                if endpoint.attributes.get("type") == MAIN_ENDPOINT_TYPE:
                    return endpoint.url
        return ""


class RoutingSynchronizer(ABC):
    @abstractmethod
    async def sync(
        self, workspace: Workspace, template: DevWorkspaceTemplate, routing_class: str
    ) -> RoutingResult:
        ...
