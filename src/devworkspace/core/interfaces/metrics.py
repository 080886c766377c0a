"""Metrics sink interface."""

from abc import ABC, abstractmethod

from devworkspace.core.domain.workspace import FailureReason, Workspace


class MetricsSink(ABC):
    """Receives workspace lifecycle events for metrics."""

    @abstractmethod
    def started(self, workspace: Workspace) -> None:
        ...

    @abstractmethod
    def running(self, workspace: Workspace, startup_seconds: float | None) -> None:
        ...

    @abstractmethod
    def failed(self, workspace: Workspace, reason: FailureReason) -> None:
        ...
