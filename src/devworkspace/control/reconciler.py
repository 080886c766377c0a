"""Reconciler - drives one DevWorkspace toward its desired state.

Pass structure:

    reconcile(namespace, name)
      fetch                     absent -> done
      run_pipeline(workspace)   -> PassOutcome
        deletion                FinalizationController
        lifecycle gates         id, failing, stopped, first start
        provisioning steps      PIPELINE order, each classified
      finalize_pass(outcome)    -> Result
        start timeout check, single status flush

Every step is idempotent: a pass that finds everything in place changes
nothing and writes nothing.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx
from pydantic import ValidationError

from devworkspace.app.config import ControllerConfig, get_settings
from devworkspace.app.logging import clear_trace_context, set_reconcile_context
from devworkspace.control.finalize import FinalizationController
from devworkspace.control.lifecycle import WorkspaceLifecycle
from devworkspace.control.result import PassOutcome, Result
from devworkspace.control.status import StatusBuilder, StatusSynchronizer
from devworkspace.control.timeout import check_start_timeout
from devworkspace.core.clock import Clock, SystemClock
from devworkspace.core.domain.conditions import ConditionType
from devworkspace.core.domain.workspace import (
    EXTERNAL_CONFIG_ATTRIBUTE,
    RESTRICTED_ACCESS_ANNOTATION,
    STOP_REASON_ANNOTATION,
    DevWorkspaceTemplate,
    FailureReason,
    Finalizer,
    Phase,
    Workspace,
)
from devworkspace.core.errors import (
    ConflictError,
    FailError,
    InvalidDurationError,
    RetryError,
)
from devworkspace.core.interfaces import (
    Collaborators,
    PodAdditions,
    RoutingResult,
    StorageProvisioner,
    WorkloadSpec,
)
from devworkspace.core.logging_schema import ErrorClass, LogEvent
from devworkspace.core.operator_config import OperatorConfig, OperatorConfigStore
from devworkspace.core.retryable import Fail, Retry, Unclassified, Warn, classify_error

logger = logging.getLogger(__name__)


@dataclass
class PassState:
    """Working data produced by earlier steps of one pass."""

    workspace: Workspace
    config: OperatorConfig
    template: DevWorkspaceTemplate = field(init=False)
    storage: StorageProvisioner | None = None
    additions: list[PodAdditions] = field(default_factory=list)
    routing: RoutingResult | None = None
    service_account: str = ""

    def __post_init__(self) -> None:
        self.template = self.workspace.spec.template

    def add(self, additions: PodAdditions | None) -> None:
        if additions is not None and not additions.is_empty():
            self.additions.append(additions)

    @property
    def main_url(self) -> str:
        return self.routing.main_url() if self.routing else ""


StepFn = Callable[[PassState, StatusBuilder], Awaitable[StatusBuilder]]


@dataclass(frozen=True)
class PipelineStep:
    """One provisioning step.

    Attributes:
        name: Step name (logs)
        condition: Condition set False when the step asks for a retry
        ready_message: If not None, condition is set True with it after the step
        run: Step body; returns the (possibly updated) status builder
    """

    name: str
    condition: ConditionType
    ready_message: str | None
    run: StepFn


class Reconciler:
    """Reconciles DevWorkspaces, one pass per call.

    Holds no per-pass state, so a single instance serves all workers.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        config_store: OperatorConfigStore,
        settings: ControllerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._c = collaborators
        self._config = config_store
        self._settings = settings or get_settings().controller
        self._clock = clock or SystemClock()
        self._slow_threshold_ms = get_settings().logging.slow_threshold_ms
        self._lifecycle = WorkspaceLifecycle(collaborators, self._clock)
        self._finalizer = FinalizationController(collaborators)
        self._status = StatusSynchronizer(collaborators.cluster, collaborators.metrics, self._clock)
        self._steps = self._build_pipeline()

    @property
    def steps(self) -> tuple[PipelineStep, ...]:
        return self._steps

    async def reconcile(self, namespace: str, name: str) -> Result:
        """Run one pass for namespace/name.

        Raises:
            Exception: unclassified errors, for the work queue's backoff
        """
        trace_id = set_reconcile_context(namespace, name)
        start = time.monotonic()
        result: Result | None = None
        try:
            workspace = await self._c.cluster.get_workspace(namespace, name)
            if workspace is None:
                # Already deleted
                result = Result.done()
                return result

            config, config_error = await self._resolve_config(workspace)
            outcome = await self.run_pipeline(workspace, config, config_error)
            result = await self.finalize_pass(outcome, config)
            return result
        except ConflictError as exc:
            logger.info(
                "Workspace changed during reconcile; requeueing: %s",
                exc.message,
                extra={"event": LogEvent.STATUS_CONFLICT},
            )
            result = Result.now()
            return result
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            log_extra = {
                "namespace": namespace,
                "workspace": name,
                "duration_ms": duration_ms,
                "result": result.label if result else "error",
                "trace_id": trace_id,
            }
            if duration_ms > self._slow_threshold_ms:
                logger.warning(
                    "Reconcile slow: %.1fms",
                    duration_ms,
                    extra={"event": LogEvent.RECONCILE_SLOW, **log_extra},
                )
            else:
                logger.debug(
                    "Reconcile complete",
                    extra={"event": LogEvent.RECONCILE_COMPLETE, **log_extra},
                )
            clear_trace_context()

    # =========================================================================
    # Pass body
    # =========================================================================

    async def run_pipeline(
        self,
        workspace: Workspace,
        config: OperatorConfig,
        config_error: str | None = None,
    ) -> PassOutcome:
        """Main body of a pass: deletion, lifecycle gates, then provisioning."""
        if workspace.is_deleting:
            return await self._finalizer.finalize(workspace, config)

        if not workspace.status.devworkspace_id:
            return await self._lifecycle.assign_id(workspace)

        if workspace.status.phase == Phase.FAILING and workspace.spec.started:
            return await self._lifecycle.stop_failing(workspace, config)

        if config_error is not None and workspace.spec.started:
            status = StatusBuilder(phase=Phase.STARTING).fail(
                config_error, FailureReason.BAD_REQUEST
            )
            return PassOutcome(workspace, Result.now(), status=status)

        if not workspace.spec.started:
            return await self._lifecycle.stop(workspace, config)

        if STOP_REASON_ANNOTATION in workspace.annotations:
            return await self._lifecycle.clear_stop_reason(workspace)

        if workspace.status.phase not in (Phase.STARTING, Phase.RUNNING):
            return await self._lifecycle.mark_starting(workspace)

        return await self._provision(PassState(workspace, config))

    async def finalize_pass(self, outcome: PassOutcome, config: OperatorConfig) -> Result:
        """Post-process a pass: start timeout, then one status flush.

        Raises:
            Exception: the pass's unclassified error, or a status write error
        """
        result, error, status = outcome.result, outcome.error, outcome.status
        if status is None or outcome.skip_status:
            if error is not None:
                raise error
            return result

        if status.phase == Phase.STARTING:
            timeout_message = self._start_timeout(outcome.workspace, status, config)
            if timeout_message is not None:
                logger.warning(
                    timeout_message,
                    extra={"event": LogEvent.START_TIMEOUT, "workspace": outcome.workspace.name},
                )
                status = status.fail(timeout_message, FailureReason.INFRASTRUCTURE_FAILURE)
                result, error = Result.now(), None

        try:
            await self._status.write(outcome.workspace, status)
        except ConflictError:
            logger.info(
                "Failed to update workspace status due to conflict; requeueing",
                extra={"event": LogEvent.STATUS_CONFLICT, "workspace": outcome.workspace.name},
            )
            if error is None:
                result = Result.now()
        except Exception as exc:
            logger.warning(
                "Error updating workspace status: %s",
                exc,
                extra={"event": LogEvent.RECONCILE_ERROR, "workspace": outcome.workspace.name},
            )
            if error is None:
                error = exc

        if error is not None:
            raise error
        return result

    def _start_timeout(
        self, workspace: Workspace, status: StatusBuilder, config: OperatorConfig
    ) -> str | None:
        progress_timeout = config.workspace.progress_timeout
        try:
            return check_start_timeout(workspace, progress_timeout, self._clock.now(), status)
        except InvalidDurationError:
            # Fail closed
            return f"invalid duration specified for progress timeout: {progress_timeout!r}"

    async def _resolve_config(self, workspace: Workspace) -> tuple[OperatorConfig, str | None]:
        """Global config, merged with the workspace's external config if it names one.

        Returns:
            (config, error message); on error the global config is returned
        """
        current = self._config.current
        ref = workspace.spec.template.attributes.get(EXTERNAL_CONFIG_ATTRIBUTE)
        if not ref:
            return current, None
        if not isinstance(ref, dict) or not ref.get("name") or not ref.get("namespace"):
            return current, (
                f"Invalid attribute {EXTERNAL_CONFIG_ATTRIBUTE}: name and namespace are required"
            )

        raw = await self._c.cluster.get_operator_config(ref["namespace"], ref["name"])
        if raw is None:
            return current, (
                f"Could not find external DevWorkspaceOperatorConfig {ref['namespace']}/{ref['name']}"
            )
        try:
            return self._config.merged_with(raw), None
        except ValidationError as exc:
            return current, f"Error applying external DevWorkspaceOperatorConfig: {exc}"

    # =========================================================================
    # Provisioning pipeline
    # =========================================================================

    async def _provision(self, state: PassState) -> PassOutcome:
        status = StatusBuilder(phase=Phase.STARTING).set_condition_true(
            ConditionType.STARTED, "DevWorkspace is starting"
        )
        workspace = state.workspace
        log_extra = {"workspace": workspace.name, "namespace": workspace.namespace}

        for step in self._steps:
            try:
                status = await step.run(state, status)
            except Exception as exc:
                match classify_error(exc):
                    case Warn(message=message):
                        logger.warning(
                            "Step %s reported warning: %s",
                            step.name,
                            message,
                            extra={**log_extra, "event": LogEvent.STEP_WARNING, "step": step.name},
                        )
                        status = status.add_warning(message)
                    case Retry(delay=delay, message=message):
                        logger.info(
                            "Step %s not ready: %s",
                            step.name,
                            message,
                            extra={
                                **log_extra,
                                "event": LogEvent.STEP_RETRY,
                                "step": step.name,
                                "error_class": ErrorClass.RETRY,
                                "requeue_after": delay,
                            },
                        )
                        status = status.set_condition_false(
                            step.condition, message or f"Waiting for {step.name}"
                        )
                        return PassOutcome(state.workspace, Result.after(delay), status=status)
                    case Fail(message=message, reason=reason):
                        logger.info(
                            "DevWorkspace failed to start: %s",
                            message,
                            extra={
                                **log_extra,
                                "event": LogEvent.STEP_FAILED,
                                "step": step.name,
                                "error_class": ErrorClass.FAIL,
                                "reason": reason,
                            },
                        )
                        return PassOutcome(
                            state.workspace, Result.now(), status=status.fail(message, reason)
                        )
                    case Unclassified(error=error):
                        logger.error(
                            "Step %s failed: %s",
                            step.name,
                            error,
                            extra={
                                **log_extra,
                                "event": LogEvent.RECONCILE_ERROR,
                                "step": step.name,
                                "error_class": ErrorClass.UNCLASSIFIED,
                            },
                        )
                        return PassOutcome(state.workspace, Result.done(), status=status, error=error)

            if step.ready_message is not None:
                status = status.set_condition_true(step.condition, step.ready_message)

        return PassOutcome(state.workspace, Result.done(), status=status)

    def _build_pipeline(self) -> tuple[PipelineStep, ...]:
        C = ConditionType
        return (
            PipelineStep("restricted_access", C.DEVFILE_RESOLVED, None, self._check_restricted_access),
            PipelineStep("resolve_devfile", C.DEVFILE_RESOLVED, None, self._resolve_devfile),
            PipelineStep("validate_components", C.DEVFILE_RESOLVED, "Resolved DevWorkspace", self._validate_components),
            PipelineStep("resolve_storage", C.STORAGE_READY, None, self._resolve_storage),
            PipelineStep("persistent_home", C.STORAGE_READY, None, self._persistent_home),
            PipelineStep("storage_finalizer", C.STORAGE_READY, None, self._storage_finalizer),
            PipelineStep("component_additions", C.DEVFILE_RESOLVED, None, self._component_additions),
            PipelineStep("environment", C.DEVFILE_RESOLVED, None, self._environment),
            PipelineStep("validate_projects", C.DEVFILE_RESOLVED, None, self._validate_projects),
            PipelineStep("project_clone", C.DEVFILE_RESOLVED, None, self._project_clone),
            PipelineStep("identity_tokens", C.IDENTITY_READY, None, self._identity_tokens),
            PipelineStep("automount", C.DEVFILE_RESOLVED, None, self._automount),
            PipelineStep("provision_storage", C.STORAGE_READY, "Storage ready", self._provision_storage),
            PipelineStep("access_finalizer", C.IDENTITY_READY, None, self._access_finalizer),
            PipelineStep("sync_access", C.IDENTITY_READY, None, self._sync_access),
            PipelineStep("sync_routing", C.ROUTING_READY, None, self._sync_routing),
            PipelineStep("publish_main_url", C.ROUTING_READY, None, self._publish_main_url),
            PipelineStep("annotate_endpoints", C.ROUTING_READY, "Networking ready", self._annotate_endpoints),
            PipelineStep("metadata", C.WORKLOAD_READY, None, self._provision_metadata),
            PipelineStep("sync_identity", C.IDENTITY_READY, "DevWorkspace serviceaccount ready", self._sync_identity),
            PipelineStep("pull_secrets", C.PULL_SECRETS_READY, "DevWorkspace secrets ready", self._pull_secrets),
            PipelineStep("sub_resources", C.SUB_RESOURCES_READY, "Sub-resources ready", self._sub_resources),
            PipelineStep("sync_workload", C.WORKLOAD_READY, "DevWorkspace deployment ready", self._sync_workload),
            PipelineStep("health_check", C.READY, None, self._check_health),
            PipelineStep("mark_running", C.READY, "", self._mark_running),
        )

    # =========================================================================
    # Steps
    # =========================================================================

    async def _check_restricted_access(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        restricted = state.workspace.annotations.get(RESTRICTED_ACCESS_ANNOTATION) == "true"
        if restricted and not self._settings.webhooks_enabled:
            raise FailError(
                "This DevWorkspace was created with restricted access, but webhooks are disabled",
                FailureReason.BAD_REQUEST,
            )
        return status

    async def _resolve_devfile(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        result = await self._c.resolver.flatten(state.workspace)
        state.template = result.template
        for warning in result.warnings:
            status = status.add_warning(warning)
        return status

    async def _validate_components(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        await self._c.resolver.validate_components(state.template)
        return status

    async def _resolve_storage(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.storage = self._c.storage.resolve(state.workspace)
        return status

    async def _persistent_home(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        if state.config.workspace.persist_user_home and self._needs_storage(state):
            state.template = await self._c.templates.add_persistent_home(
                state.workspace, state.template
            )
        return status

    async def _storage_finalizer(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        if self._needs_storage(state):
            await self._ensure_finalizer(state, Finalizer.STORAGE)
        return status

    async def _component_additions(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(await self._c.templates.component_additions(state.workspace, state.template))
        return status

    async def _environment(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        env = await self._c.templates.environment(state.workspace, state.template)
        state.add(PodAdditions(env=env))
        return status

    async def _validate_projects(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        await self._c.resolver.validate_projects(state.template)
        return status

    async def _project_clone(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(
            await self._c.templates.project_clone(state.workspace, state.template, state.config)
        )
        return status

    async def _identity_tokens(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(await self._c.templates.identity_token_mounts(state.workspace, state.template))
        return status

    async def _automount(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(await self._c.mounts.automount(state.workspace, state.template))
        return status

    async def _provision_storage(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        storage = self._storage(state)
        state.add(
            await storage.provision(state.workspace, state.template, list(state.additions), state.config)
        )
        return status

    async def _access_finalizer(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        await self._ensure_finalizer(state, Finalizer.RBAC)
        return status

    async def _sync_access(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        await self._c.access.sync(state.workspace)
        return status

    async def _sync_routing(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        routing_class = state.workspace.routing_class(state.config.routing.default_routing_class)
        routing = await self._c.routing.sync(state.workspace, state.template, routing_class)
        if not routing.ready:
            raise RetryError(
                routing.status_message or "Waiting for routing to be ready", requeue_after=1.0
            )
        state.routing = routing
        state.add(routing.pod_additions)
        return status

    async def _publish_main_url(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        return status.with_main_url(state.main_url)

    async def _annotate_endpoints(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        exposed = state.routing.exposed_endpoints if state.routing else {}
        state.template = await self._c.templates.annotate_endpoints(state.template, exposed)
        return status

    async def _provision_metadata(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(
            await self._c.metadata.provision(
                state.workspace, state.workspace.spec.template, state.template
            )
        )
        return status

    async def _sync_identity(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.service_account = await self._c.identity.sync(state.workspace, state.config)
        return status

    async def _pull_secrets(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        state.add(await self._c.mounts.pull_secrets(state.workspace, state.service_account))
        return status

    async def _sub_resources(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        await self._c.sub_resources.sync(state.workspace, state.template)
        return status

    async def _sync_workload(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        spec = WorkloadSpec(
            template=state.template,
            additions=list(state.additions),
            service_account=state.service_account,
        )
        await self._c.workload.sync(state.workspace, spec, state.config)
        return status

    async def _check_health(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        requeue = self._settings.health_check_requeue
        try:
            health = await self._c.health.check(state.main_url, self._settings.health_check_timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            logger.info(
                "Health check failed: %s",
                exc,
                extra={"event": LogEvent.HEALTH_PROBE_FAILED, "workspace": state.workspace.name},
            )
            raise RetryError(
                "Waiting for DevWorkspace to be ready", requeue_after=requeue, cause=exc
            ) from exc
        if not health.ok:
            raise RetryError(
                f"Waiting for DevWorkspace to be ready (status {health.status_code})",
                requeue_after=requeue,
            )
        return status

    async def _mark_running(self, state: PassState, status: StatusBuilder) -> StatusBuilder:
        # Started is left as set at the start of the attempt (startup time is measured from it)
        return status.with_phase(Phase.RUNNING)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _storage(self, state: PassState) -> StorageProvisioner:
        if state.storage is None:
            state.storage = self._c.storage.resolve(state.workspace)
        return state.storage

    def _needs_storage(self, state: PassState) -> bool:
        return self._storage(state).needs_storage(state.template)

    async def _ensure_finalizer(self, state: PassState, finalizer: Finalizer) -> None:
        if state.workspace.has_finalizer(finalizer):
            return
        updated = state.workspace.model_copy(deep=True)
        updated.metadata.finalizers.append(finalizer)
        state.workspace = await self._c.cluster.update_workspace(updated)
        logger.info(
            "Added finalizer %s",
            finalizer,
            extra={"event": LogEvent.FINALIZER_ADDED, "workspace": state.workspace.name},
        )
