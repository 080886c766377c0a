"""DevWorkspace resource model and domain constants.

The resource is owned by its user. The controller only mutates
status, metadata.finalizers and a small set of annotations.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from devworkspace.core.domain.conditions import Condition, ConditionType


class Phase(StrEnum):
    """Workspace phase as written to status.phase.

    FAILING and TERMINATING are controller-internal: they are persisted but
    only ever set by this controller while it still has work to do.
    """

    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    FAILING = "Failing"
    FAILED = "Failed"
    ERROR = "Error"
    TERMINATING = "Terminating"


class Finalizer(StrEnum):
    """Finalizers this controller adds and removes."""

    STORAGE = "storage.controller.devfile.io"
    # Legacy: no longer added, still processed for older workspaces
    SERVICE_ACCOUNT = "serviceaccount.controller.devfile.io"
    RBAC = "rbac.controller.devfile.io"


class FailureReason(StrEnum):
    """Coarse reason attached to FailedStart conditions (CamelCase)."""

    BAD_REQUEST = "BadRequest"
    INFRASTRUCTURE_FAILURE = "InfrastructureFailure"
    WORKSPACE_ENGINE_FAILURE = "WorkspaceEngineFailure"
    UNKNOWN = "Unknown"

    @property
    def metric_label(self) -> str:
        return _METRIC_LABELS[self]

    @classmethod
    def parse(cls, value: str | None) -> "FailureReason":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_METRIC_LABELS = {
    FailureReason.BAD_REQUEST: "bad_request",
    FailureReason.INFRASTRUCTURE_FAILURE: "infrastructure_failure",
    FailureReason.WORKSPACE_ENGINE_FAILURE: "workspace_engine_failure",
    FailureReason.UNKNOWN: "unknown",
}


# =============================================================================
# Annotations / labels / attributes
# =============================================================================

ID_OVERRIDE_ANNOTATION = "controller.devfile.io/devworkspace_id_override"
DEBUG_START_ANNOTATION = "controller.devfile.io/debug-start"
STOP_REASON_ANNOTATION = "controller.devfile.io/stopped-by"
RESTRICTED_ACCESS_ANNOTATION = "controller.devfile.io/restricted-access"

WORKSPACE_ID_LABEL = "controller.devfile.io/devworkspace_id"
WORKSPACE_NAME_LABEL = "controller.devfile.io/devworkspace_name"
MOUNT_TO_WORKSPACE_LABEL = "controller.devfile.io/mount-to-devworkspace"
PVC_TYPE_LABEL = "controller.devfile.io/devworkspace-pvc-type"

STORAGE_TYPE_ATTRIBUTE = "controller.devfile.io/storage-type"
EXTERNAL_CONFIG_ATTRIBUTE = "controller.devfile.io/devworkspace-config"

# Storage types sharing a single PVC across workspaces in a namespace
COMMON_STORAGE_TYPES = frozenset({"common", "per-user"})
DEFAULT_STORAGE_TYPE = "per-user"
PER_WORKSPACE_STORAGE_TYPE = "per-workspace"

MAX_ID_OVERRIDE_LENGTH = 25


class _CamelModel(BaseModel):
    # Unknown fields are kept so full-object writes do not drop them
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class OwnerReference(_CamelModel):
    api_version: str = ""
    kind: str = ""
    name: str = ""
    uid: str
    controller: bool = False


class ObjectMeta(_CamelModel):
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None


class DevWorkspaceTemplate(_CamelModel):
    """Devfile content embedded in a workspace.

    Kept opaque: resolution and flattening belong to DevfileResolver.
    """

    parent: dict[str, Any] | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    components: list[dict[str, Any]] = Field(default_factory=list)
    projects: list[dict[str, Any]] = Field(default_factory=list)
    starter_projects: list[dict[str, Any]] = Field(default_factory=list)
    commands: list[dict[str, Any]] = Field(default_factory=list)
    events: dict[str, Any] | None = None

    def storage_type(self) -> str:
        return str(self.attributes.get(STORAGE_TYPE_ATTRIBUTE) or DEFAULT_STORAGE_TYPE)

    def uses_common_storage(self) -> bool:
        return self.storage_type() in COMMON_STORAGE_TYPES


class WorkspaceSpec(_CamelModel):
    started: bool = False
    routing_class: str = ""
    template: DevWorkspaceTemplate = Field(default_factory=DevWorkspaceTemplate)
    contributions: list[dict[str, Any]] = Field(default_factory=list)


class WorkspaceStatus(_CamelModel):
    devworkspace_id: str = ""
    phase: Phase | None = None
    main_url: str = ""
    message: str = ""
    conditions: list[Condition] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class Workspace(_CamelModel):
    """DevWorkspace custom resource."""

    api_version: str = "workspace.devfile.io/v1alpha2"
    kind: str = "DevWorkspace"
    metadata: ObjectMeta
    spec: WorkspaceSpec = Field(default_factory=WorkspaceSpec)
    status: WorkspaceStatus = Field(default_factory=WorkspaceStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def key(self) -> tuple[str, str]:
        return (self.metadata.namespace, self.metadata.name)

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def failed_start_condition(self) -> Condition | None:
        return self.status.get_condition(ConditionType.FAILED_START)

    def routing_class(self, default: str = "") -> str:
        return self.spec.routing_class or default
