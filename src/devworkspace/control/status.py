"""Condition/phase tracking and status synchronization.

StatusBuilder collects what a single reconcile pass observed. It is
immutable: every setter returns a new builder, and pipeline steps hand the
updated builder back to the reconciler.

StatusSynchronizer merges a builder into the persisted condition list and
writes the status sub-resource only when something changed.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from devworkspace.core.clock import Clock
from devworkspace.core.domain.conditions import (
    CONDITION_ORDER,
    Condition,
    ConditionType,
)
from devworkspace.core.domain.workspace import FailureReason, Phase, Workspace
from devworkspace.core.interfaces.cluster import ClusterClient
from devworkspace.core.interfaces.metrics import MetricsSink
from devworkspace.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

# Phases entered on a failed start attempt
FAILED_PHASES = frozenset({Phase.FAILING, Phase.FAILED})


@dataclass(frozen=True)
class StatusBuilder:
    """Observations of one reconcile pass.

    Attributes:
        phase: Target phase for this pass
        conditions: Observed conditions keyed by type
        warnings: Warning conditions (keyed by message)
        main_url: Main endpoint URL, if resolved this pass
    """

    phase: Phase
    conditions: dict[str, Condition] = field(default_factory=dict)
    warnings: tuple[Condition, ...] = ()
    main_url: str | None = None

    def with_phase(self, phase: Phase) -> "StatusBuilder":
        return replace(self, phase=phase)

    def with_main_url(self, main_url: str) -> "StatusBuilder":
        return replace(self, main_url=main_url)

    def set_condition(self, condition_type: str, condition: Condition) -> "StatusBuilder":
        observed = condition.model_copy(update={"type": str(condition_type)})
        return replace(self, conditions={**self.conditions, str(condition_type): observed})

    def set_condition_true(
        self, condition_type: str, message: str = "", reason: str = ""
    ) -> "StatusBuilder":
        return self.set_condition(
            condition_type,
            Condition(type=condition_type, status="True", message=message, reason=reason),
        )

    def set_condition_false(
        self, condition_type: str, message: str, reason: str = ""
    ) -> "StatusBuilder":
        return self.set_condition(
            condition_type,
            Condition(type=condition_type, status="False", message=message, reason=reason),
        )

    def add_warning(self, message: str, reason: str = "") -> "StatusBuilder":
        if any(w.message == message for w in self.warnings):
            return self
        warning = Condition(
            type=ConditionType.WARNING, status="True", message=message, reason=reason
        )
        return replace(self, warnings=(*self.warnings, warning))

    def fail(self, message: str, reason: FailureReason) -> "StatusBuilder":
        """Move to the internal Failing phase with a FailedStart condition."""
        return self.with_phase(Phase.FAILING).set_condition_true(
            ConditionType.FAILED_START, message, reason
        )

    def get_first_false(self) -> Condition | None:
        """First False condition in progress order (the blocking stage)."""
        for condition_type in CONDITION_ORDER:
            condition = self.conditions.get(condition_type)
            if condition is not None and condition.is_false():
                return condition
        return None

    def get_last_true(self) -> Condition | None:
        """Last True condition in progress order."""
        last = None
        for condition_type in CONDITION_ORDER:
            condition = self.conditions.get(condition_type)
            if condition is not None and condition.is_true():
                last = condition
        return last


# =============================================================================
# Merge
# =============================================================================


def sync_conditions(
    persisted: list[Condition], status: StatusBuilder, now: datetime
) -> list[Condition]:
    """Merge this pass's observations into the persisted condition list.

    - persisted but not observed: Unknown, message/reason cleared
    - observed and changed: updated and re-stamped
    - observed and unchanged: left as is (timestamp kept)
    - newly observed: appended
    Warnings are matched by message; warnings no longer reported are dropped.

    Returns:
        New list sorted by (progress order, type, message)
    """
    observed_warnings = {w.message: w for w in status.warnings}
    seen_types: set[str] = set()
    seen_warnings: set[str] = set()
    merged: list[Condition] = []

    for existing in persisted:
        if existing.is_warning():
            incoming = observed_warnings.get(existing.message)
            if incoming is None or existing.message in seen_warnings:
                continue
            seen_warnings.add(existing.message)
            if incoming.status != existing.status or incoming.reason != existing.reason:
                merged.append(incoming.model_copy(update={"last_transition_time": now}))
            else:
                merged.append(existing)
            continue

        seen_types.add(existing.type)
        incoming = status.conditions.get(existing.type)
        if incoming is None:
            unknown = Condition(type=existing.type, status="Unknown")
            if existing.same_observation(unknown):
                merged.append(existing)
            else:
                merged.append(unknown.model_copy(update={"last_transition_time": now}))
        elif incoming.same_observation(existing):
            merged.append(existing)
        else:
            merged.append(incoming.model_copy(update={"last_transition_time": now}))

    for condition_type, incoming in status.conditions.items():
        if condition_type not in seen_types:
            merged.append(incoming.model_copy(update={"last_transition_time": now}))
    for message, warning in observed_warnings.items():
        if message not in seen_warnings:
            merged.append(warning.model_copy(update={"last_transition_time": now}))

    return sorted(merged, key=Condition.sort_key)


def summary_message(status: StatusBuilder, main_url: str) -> str:
    """Single human-readable status message.

    Priority: Error condition > FailedStart condition > phase text
    (Running: main URL, Stopping/Stopped: phase name) > first False
    condition > last True condition > "".
    """
    if (error := status.conditions.get(ConditionType.ERROR)) is not None:
        message = error.message
    elif (failed := status.conditions.get(ConditionType.FAILED_START)) is not None:
        message = failed.message
    elif status.phase == Phase.RUNNING:
        message = main_url
    elif status.phase in (Phase.STOPPING, Phase.STOPPED):
        message = str(status.phase)
    elif (first_false := status.get_first_false()) is not None:
        message = first_false.message
    elif (last_true := status.get_last_true()) is not None:
        message = last_true.message
    else:
        message = ""

    if count := len(status.warnings):
        suffix = f"[{count} warning{'s' if count != 1 else ''}]"
        message = f"{message} {suffix}" if message else suffix
    return message


def startup_seconds(workspace: Workspace) -> float | None:
    """Seconds between the Started and Ready condition transitions."""
    started = workspace.status.get_condition(ConditionType.STARTED)
    ready = workspace.status.get_condition(ConditionType.READY)
    if started is None or ready is None:
        return None
    if started.last_transition_time is None or ready.last_transition_time is None:
        return None
    return (ready.last_transition_time - started.last_transition_time).total_seconds()


# =============================================================================
# Writer
# =============================================================================


class StatusSynchronizer:
    """Writes StatusBuilder observations to the status sub-resource."""

    def __init__(self, cluster: ClusterClient, metrics: MetricsSink, clock: Clock) -> None:
        self._cluster = cluster
        self._metrics = metrics
        self._clock = clock

    def merge(self, workspace: Workspace, status: StatusBuilder) -> Workspace:
        """Workspace copy with observations merged into its status."""
        updated = workspace.model_copy(deep=True)
        updated.status.conditions = sync_conditions(
            workspace.status.conditions, status, self._clock.now()
        )
        updated.status.phase = status.phase
        if status.main_url is not None:
            updated.status.main_url = status.main_url
        updated.status.message = summary_message(status, updated.status.main_url)
        return updated

    async def write(self, workspace: Workspace, status: StatusBuilder) -> Workspace:
        """Flush observations; no API call when nothing changed.

        Raises:
            ConflictError: workspace changed since it was read
        """
        updated = self.merge(workspace, status)
        if updated.status == workspace.status:
            return workspace

        stored = await self._cluster.update_status(updated)
        old_phase = workspace.status.phase
        if old_phase != updated.status.phase:
            logger.info(
                "Phase changed",
                extra={
                    "event": LogEvent.PHASE_CHANGED,
                    "workspace": workspace.name,
                    "namespace": workspace.namespace,
                    "from_phase": old_phase,
                    "to_phase": updated.status.phase,
                },
            )
            self._record_phase_metrics(stored, old_phase, updated.status.phase)
        return stored

    def _record_phase_metrics(
        self, workspace: Workspace, old_phase: Phase | None, new_phase: Phase | None
    ) -> None:
        if new_phase == Phase.RUNNING:
            self._metrics.running(workspace, startup_seconds(workspace))
        elif new_phase in FAILED_PHASES and old_phase not in FAILED_PHASES:
            failed = workspace.failed_start_condition()
            reason = FailureReason.parse(failed.reason if failed else None)
            self._metrics.failed(workspace, reason)
