"""Lifecycle gates that run before the provisioning pipeline.

Each gate either lets the pass continue into the pipeline or ends it with
a PassOutcome:
- identifier assignment (derived or user override)
- failing workspaces: stop, or hold for debugging
- stopped workspaces: scale down or clean up
- first start: mark Starting before any provisioning
"""

import logging
from datetime import timedelta

from devworkspace.control.cleanup import delete_owned_objects
from devworkspace.control.result import PassOutcome, Result
from devworkspace.control.status import FAILED_PHASES, StatusBuilder
from devworkspace.control.timeout import check_failing_timeout, parse_duration
from devworkspace.core.clock import Clock
from devworkspace.core.domain.conditions import Condition, ConditionType
from devworkspace.core.domain.workspace import (
    DEBUG_START_ANNOTATION,
    ID_OVERRIDE_ANNOTATION,
    MAX_ID_OVERRIDE_LENGTH,
    STOP_REASON_ANNOTATION,
    FailureReason,
    Phase,
    Workspace,
)
from devworkspace.core.errors import FailError, InvalidDurationError
from devworkspace.core.interfaces import Collaborators
from devworkspace.core.logging_schema import LogEvent
from devworkspace.core.operator_config import OperatorConfig
from devworkspace.core.retryable import Retry, classify_error

logger = logging.getLogger(__name__)


def derive_workspace_id(uid: str) -> str:
    """Deterministic identifier from the resource UID.

    "workspace" + the first three UID groups, e.g.
    "8f2ab3c1-4d5e-6f70-..." -> "workspace8f2ab3c14d5e6f70".
    """
    return "workspace" + "".join(uid.split("-")[:3])


async def resolve_workspace_id(collaborators: Collaborators, workspace: Workspace) -> str:
    """Identifier for a workspace that does not have one yet.

    Raises:
        FailError: override is too long or already used in the namespace
    """
    override = workspace.annotations.get(ID_OVERRIDE_ANNOTATION)
    if not override:
        return derive_workspace_id(workspace.uid)

    if len(override) > MAX_ID_OVERRIDE_LENGTH:
        raise FailError(
            f"maximum length for DevWorkspace ID override is {MAX_ID_OVERRIDE_LENGTH} characters",
            FailureReason.BAD_REQUEST,
        )
    for other in await collaborators.cluster.list_workspaces(workspace.namespace):
        if other.uid != workspace.uid and other.status.devworkspace_id == override:
            raise FailError(
                f"DevWorkspace ID specified in override already in use by DevWorkspace {other.name}",
                FailureReason.BAD_REQUEST,
            )
    return override


class WorkspaceLifecycle:
    """Gates of a reconcile pass that do not involve provisioning."""

    def __init__(self, collaborators: Collaborators, clock: Clock) -> None:
        self._c = collaborators
        self._clock = clock

    async def assign_id(self, workspace: Workspace) -> PassOutcome:
        """Set status.devworkspaceId once; it never changes afterwards."""
        try:
            workspace_id = await resolve_workspace_id(self._c, workspace)
        except FailError as exc:
            logger.warning(
                "Failed to set DevWorkspace ID: %s",
                exc.message,
                extra={"event": LogEvent.STEP_FAILED, "workspace": workspace.name},
            )
            status = StatusBuilder(phase=Phase.FAILED).set_condition_true(
                ConditionType.FAILED_START,
                f"Failed to set DevWorkspace ID: {exc.message}",
                exc.reason,
            )
            return PassOutcome(workspace, Result.done(), status=status)

        updated = workspace.model_copy(deep=True)
        updated.status.devworkspace_id = workspace_id
        stored = await self._c.cluster.update_status(updated)
        logger.info(
            "Assigned DevWorkspace ID %s",
            workspace_id,
            extra={"event": LogEvent.ID_ASSIGNED, "devworkspace_id": workspace_id},
        )
        return PassOutcome(stored, Result.now())

    async def stop_failing(self, workspace: Workspace, config: OperatorConfig) -> PassOutcome:
        """Force spec.started=false on a Failing workspace.

        With the debug-start annotation the workload is kept for inspection
        until the workspace has been failing for the progress timeout.
        """
        progress_timeout = config.workspace.progress_timeout
        if workspace.annotations.get(DEBUG_START_ANNOTATION) == "true":
            now = self._clock.now()
            try:
                timed_out = check_failing_timeout(workspace, progress_timeout, now)
            except InvalidDurationError:
                timed_out = True
            if not timed_out:
                failed = workspace.failed_start_condition()
                remaining = parse_duration(progress_timeout)
                if failed is not None and failed.last_transition_time is not None:
                    remaining = failed.last_transition_time + remaining - now
                return PassOutcome(
                    workspace,
                    Result.after(max(remaining, timedelta(seconds=1)).total_seconds()),
                )

        await self._c.cluster.patch_started(workspace, False)
        return PassOutcome(workspace, Result.now())

    async def stop(self, workspace: Workspace, config: OperatorConfig) -> PassOutcome:
        """Scale the workload down (or delete owned objects) and report Stopped.

        A workspace that was Failing/Failed keeps that phase and its
        FailedStart condition, and ends up Failed.
        """
        status = StatusBuilder(phase=Phase.STOPPING)
        if workspace.status.phase in FAILED_PHASES:
            status = status.with_phase(workspace.status.phase)
            if (failed := workspace.failed_start_condition()) is not None:
                status = status.set_condition(ConditionType.FAILED_START, failed)

        try:
            if config.workspace.cleanup_on_stop:
                stopped = await delete_owned_objects(self._c.cluster, workspace)
            else:
                stopped = await self._c.workload.scale_to_zero(workspace)
        except Exception as exc:
            # Status is flushed on every exit; transient errors requeue without an error
            match classify_error(exc):
                case Retry(delay=delay, message=message):
                    logger.info(
                        "Stopping workspace, retrying: %s",
                        message,
                        extra={"event": LogEvent.STEP_RETRY, "workspace": workspace.name},
                    )
                    return PassOutcome(workspace, Result.after(delay), status=status)
                case _:
                    return PassOutcome(workspace, Result.done(), status=status, error=exc)

        if not stopped:
            logger.info(
                "Stopping workspace",
                extra={"event": LogEvent.WORKSPACE_STOPPING, "workspace": workspace.name},
            )
            return PassOutcome(workspace, Result.after(1.0), status=status)

        if status.phase in FAILED_PHASES:
            status = status.with_phase(Phase.FAILED).set_condition_false(
                ConditionType.STARTED, "Workspace stopped due to error"
            )
        else:
            status = status.with_phase(Phase.STOPPED).set_condition_false(
                ConditionType.STARTED, "Workspace is stopped"
            )
        return PassOutcome(workspace, Result.done(), status=status)

    async def clear_stop_reason(self, workspace: Workspace) -> PassOutcome:
        """Drop the stopped-by annotation from a workspace being started."""
        updated = workspace.model_copy(deep=True)
        updated.metadata.annotations.pop(STOP_REASON_ANNOTATION, None)
        stored = await self._c.cluster.update_workspace(updated)
        return PassOutcome(stored, Result.now())

    async def mark_starting(self, workspace: Workspace) -> PassOutcome:
        """Write phase Starting and the Started condition immediately.

        Written directly (not through the status synchronizer) so the
        Started timestamp used for startup metrics is as early as possible.
        """
        updated = workspace.model_copy(deep=True)
        updated.status.phase = Phase.STARTING
        updated.status.message = "Initializing DevWorkspace"
        updated.status.conditions = [
            Condition(
                type=ConditionType.STARTED,
                status="True",
                message="DevWorkspace is starting",
                last_transition_time=self._clock.now(),
            )
        ]
        stored = await self._c.cluster.update_status(updated)
        self._c.metrics.started(stored)
        return PassOutcome(stored, Result.now())
