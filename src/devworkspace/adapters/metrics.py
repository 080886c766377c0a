"""MetricsSink backed by the Prometheus collectors."""

from devworkspace.app.metrics.collector import (
    WORKSPACE_FAILS_TOTAL,
    WORKSPACE_RUNNING_TOTAL,
    WORKSPACE_STARTS_TOTAL,
    WORKSPACE_STARTUP_TIME,
)
from devworkspace.core.domain.workspace import FailureReason, Workspace
from devworkspace.core.interfaces.metrics import MetricsSink


class PrometheusMetricsSink(MetricsSink):
    def __init__(self, default_routing_class: str = "") -> None:
        self._default_routing_class = default_routing_class

    def _routing_class(self, workspace: Workspace) -> str:
        return workspace.routing_class(self._default_routing_class) or "basic"

    def started(self, workspace: Workspace) -> None:
        WORKSPACE_STARTS_TOTAL.labels(routing_class=self._routing_class(workspace)).inc()

    def running(self, workspace: Workspace, startup_seconds: float | None) -> None:
        routing_class = self._routing_class(workspace)
        WORKSPACE_RUNNING_TOTAL.labels(routing_class=routing_class).inc()
        if startup_seconds is not None:
            WORKSPACE_STARTUP_TIME.labels(routing_class=routing_class).observe(startup_seconds)

    def failed(self, workspace: Workspace, reason: FailureReason) -> None:
        WORKSPACE_FAILS_TOTAL.labels(
            routing_class=self._routing_class(workspace),
            reason=reason.metric_label,
        ).inc()
