"""Finalizer-driven teardown of deleted workspaces.

One finalizer is handled per pass: the first entry of metadata.finalizers
that this controller owns. Removing it updates the workspace, which
triggers the next pass for the remaining finalizers.
"""

import logging

from devworkspace.control.result import PassOutcome, Result
from devworkspace.control.status import StatusBuilder
from devworkspace.core.domain.conditions import ConditionType
from devworkspace.core.domain.workspace import Finalizer, Phase, Workspace
from devworkspace.core.errors import ConflictError, NotFoundError
from devworkspace.core.interfaces import Collaborators
from devworkspace.core.logging_schema import ErrorClass, LogEvent
from devworkspace.core.operator_config import OperatorConfig
from devworkspace.core.retryable import Fail, Retry, Unclassified, Warn, classify_error

logger = logging.getLogger(__name__)


class FinalizationController:
    """Runs cleanup for the first pending finalizer and removes it."""

    def __init__(self, collaborators: Collaborators) -> None:
        self._c = collaborators

    async def finalize(self, workspace: Workspace, config: OperatorConfig) -> PassOutcome:
        status = self._initial_status(workspace)

        for finalizer in workspace.metadata.finalizers:
            match finalizer:
                case Finalizer.STORAGE:
                    return await self._finalize_storage(workspace, config, status)
                case Finalizer.SERVICE_ACCOUNT:
                    return await self._finalize_identity(workspace, status)
                case Finalizer.RBAC:
                    return await self._finalize_access(workspace, status)

        # Nothing of ours left; only report status while someone else still blocks deletion
        return PassOutcome(
            workspace,
            Result.done(),
            status=status,
            skip_status=not workspace.metadata.finalizers,
        )

    @staticmethod
    def _initial_status(workspace: Workspace) -> StatusBuilder:
        # A failed cleanup keeps reporting Error while it is retried
        if workspace.status.phase == Phase.ERROR:
            status = StatusBuilder(phase=Phase.ERROR)
            error = workspace.status.get_condition(ConditionType.ERROR)
            if error is not None:
                status = status.set_condition(ConditionType.ERROR, error)
            return status
        return StatusBuilder(phase=Phase.TERMINATING).set_condition_true(
            ConditionType.TERMINATING, "Cleaning up resources for deletion"
        )

    async def _finalize_storage(
        self, workspace: Workspace, config: OperatorConfig, status: StatusBuilder
    ) -> PassOutcome:
        # Workload goes first so the storage cleanup is not blocked by mounts
        try:
            waiting = await self._c.workload.delete(workspace)
        except Exception as exc:
            return PassOutcome(workspace, Result.done(), status=status, error=exc)
        if waiting:
            return PassOutcome(workspace, Result.now(), status=status)

        if await self._c.cluster.is_namespace_terminating(workspace.namespace):
            logger.info(
                "Namespace is terminating; clearing storage finalizer",
                extra={"event": LogEvent.FINALIZER_REMOVED, "workspace": workspace.name},
            )
            return await self._remove_finalizer(workspace, Finalizer.STORAGE, status)

        try:
            provisioner = self._c.storage.resolve(workspace)
            await provisioner.cleanup(workspace, config)
        except Exception as exc:
            return await self._classify_cleanup_error(workspace, Finalizer.STORAGE, status, exc)

        return await self._remove_finalizer(workspace, Finalizer.STORAGE, status)

    async def _finalize_access(self, workspace: Workspace, status: StatusBuilder) -> PassOutcome:
        if await self._c.cluster.is_namespace_terminating(workspace.namespace):
            return await self._remove_finalizer(workspace, Finalizer.RBAC, status)

        try:
            await self._c.access.finalize(workspace)
        except Exception as exc:
            return await self._classify_cleanup_error(workspace, Finalizer.RBAC, status, exc)

        return await self._remove_finalizer(workspace, Finalizer.RBAC, status)

    async def _finalize_identity(self, workspace: Workspace, status: StatusBuilder) -> PassOutcome:
        try:
            retry = await self._c.identity.finalize(workspace)
        except Exception as exc:
            return PassOutcome(workspace, Result.done(), status=status, error=exc)
        if retry:
            return PassOutcome(workspace, Result.now(), status=status)
        return await self._remove_finalizer(workspace, Finalizer.SERVICE_ACCOUNT, status)

    async def _classify_cleanup_error(
        self,
        workspace: Workspace,
        finalizer: Finalizer,
        status: StatusBuilder,
        exc: Exception,
    ) -> PassOutcome:
        log_extra = {"workspace": workspace.name, "finalizer": finalizer}
        match classify_error(exc):
            case Retry(delay=delay, message=message):
                logger.info(
                    "Cleanup not finished: %s",
                    message,
                    extra={**log_extra, "event": LogEvent.STEP_RETRY, "error_class": ErrorClass.RETRY},
                )
                return PassOutcome(workspace, Result.after(delay), status=status)
            case Fail(message=message):
                # Error phase instead of an error return: retrying will not help
                logger.error(
                    "Failed to clean up DevWorkspace: %s",
                    message,
                    extra={**log_extra, "event": LogEvent.STEP_FAILED, "error_class": ErrorClass.FAIL},
                )
                status = status.with_phase(Phase.ERROR).set_condition_true(
                    ConditionType.ERROR, message
                )
                return PassOutcome(workspace, Result.done(), status=status)
            case Warn(message=message):
                logger.warning(
                    "Cleanup finished with warning: %s",
                    message,
                    extra={**log_extra, "event": LogEvent.STEP_WARNING, "error_class": ErrorClass.WARNING},
                )
                return await self._remove_finalizer(
                    workspace, finalizer, status.add_warning(message)
                )
            case Unclassified(error=error):
                return PassOutcome(workspace, Result.done(), status=status, error=error)

    async def _remove_finalizer(
        self, workspace: Workspace, finalizer: Finalizer, status: StatusBuilder
    ) -> PassOutcome:
        updated = workspace.model_copy(deep=True)
        updated.metadata.finalizers = [f for f in updated.metadata.finalizers if f != finalizer]
        try:
            stored = await self._c.cluster.update_workspace(updated)
        except NotFoundError:
            return PassOutcome(workspace, Result.done(), skip_status=True)
        except ConflictError:
            return PassOutcome(workspace, Result.now(), skip_status=True)

        logger.info(
            "Removed finalizer %s",
            finalizer,
            extra={"event": LogEvent.FINALIZER_REMOVED, "workspace": workspace.name},
        )
        # Last finalizer gone: the workspace may be deleted before a status write lands
        return PassOutcome(
            stored,
            Result.done(),
            status=status,
            skip_status=not updated.metadata.finalizers,
        )
