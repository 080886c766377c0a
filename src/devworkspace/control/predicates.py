"""Event filtering and mapping for the work queue.

Watch events are turned into workspace keys here; nothing in this module
reconciles. EventRouter is the single entry point used by the watchers:

    workspace event        -> workspace_update_predicate -> its own key
    deployment / routing   -> owner_to_workspace         -> controlling workspace
    pod event              -> workload_to_workspace      -> labelled workspace
    PVC event              -> pvc_to_workspaces          -> owner, or all common-storage users
    automount object       -> automount_to_workspaces    -> started workspaces in namespace
    operator config event  -> OperatorConfigStore        (never enqueues)
"""

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from devworkspace.core.domain.workspace import (
    COMMON_STORAGE_TYPES,
    EXTERNAL_CONFIG_ATTRIBUTE,
    MOUNT_TO_WORKSPACE_LABEL,
    PER_WORKSPACE_STORAGE_TYPE,
    PVC_TYPE_LABEL,
    WORKSPACE_ID_LABEL,
    WORKSPACE_NAME_LABEL,
    Phase,
    Workspace,
)
from devworkspace.core.interfaces.cluster import ClusterClient, ObjectKind, OwnedObject
from devworkspace.core.logging_schema import LogEvent
from devworkspace.core.operator_config import OperatorConfigStore

logger = logging.getLogger(__name__)

WorkspaceKey = tuple[str, str]

WORKSPACE_KIND = "DevWorkspace"

# Watch event types (Kubernetes watch API)
ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def workspace_update_predicate(old: Workspace, new: Workspace) -> bool:
    """Whether an update to a workspace needs a reconcile.

    Status-only writes (including our own) are ignored. A Failed workspace
    stays put until the user edits it, deletes it, or toggles started.
    """
    generation_changed = old.metadata.generation != new.metadata.generation
    started_changed = old.spec.started != new.spec.started

    if new.status.phase == Phase.FAILED:
        return generation_changed or started_changed or new.is_deleting

    return (
        generation_changed
        or started_changed
        or old.metadata.deletion_timestamp != new.metadata.deletion_timestamp
        or old.metadata.annotations != new.metadata.annotations
        or old.metadata.labels != new.metadata.labels
        or old.metadata.finalizers != new.metadata.finalizers
    )


def workload_to_workspace(obj: OwnedObject) -> list[WorkspaceKey]:
    """Map a workspace deployment or pod to its workspace.

    Objects missing either the name or the id label are not ours.
    """
    name = obj.labels.get(WORKSPACE_NAME_LABEL)
    if not name or WORKSPACE_ID_LABEL not in obj.labels:
        return []
    return [(obj.namespace, name)]


def owner_to_workspace(obj: OwnedObject) -> list[WorkspaceKey]:
    """Map an object the controller created to its controlling workspace."""
    for owner in obj.owners:
        if owner.kind == WORKSPACE_KIND and owner.controller:
            return [(obj.namespace, owner.name)]
    return []


class WorkspaceEventMapper:
    """Mappers that need to look at other workspaces in the namespace."""

    def __init__(self, cluster: ClusterClient, config_store: OperatorConfigStore) -> None:
        self._cluster = cluster
        self._config = config_store

    async def pvc_to_workspaces(self, obj: OwnedObject) -> list[WorkspaceKey]:
        pvc_type = obj.labels.get(PVC_TYPE_LABEL)
        if pvc_type is None:
            return []

        if pvc_type == PER_WORKSPACE_STORAGE_TYPE:
            for owner in obj.owners:
                if owner.kind == WORKSPACE_KIND:
                    return [(obj.namespace, owner.name)]
            return []

        if pvc_type not in COMMON_STORAGE_TYPES and pvc_type != "":
            return []

        keys = []
        for workspace in await self._cluster.list_workspaces(obj.namespace):
            if not workspace.spec.template.uses_common_storage():
                continue
            if await self._pvc_name_for(workspace) == obj.name:
                keys.append(workspace.key)
        return keys

    async def automount_to_workspaces(self, obj: OwnedObject) -> list[WorkspaceKey]:
        if obj.labels.get(MOUNT_TO_WORKSPACE_LABEL) != "true":
            return []
        workspaces = await self._cluster.list_workspaces(obj.namespace)
        return [ws.key for ws in workspaces if ws.spec.started]

    async def _pvc_name_for(self, workspace: Workspace) -> str:
        default = self._config.current.workspace.pvc_name
        ref = workspace.spec.template.attributes.get(EXTERNAL_CONFIG_ATTRIBUTE)
        if not isinstance(ref, dict) or not ref.get("name") or not ref.get("namespace"):
            return default
        raw = await self._cluster.get_operator_config(ref["namespace"], ref["name"])
        if raw is None:
            return default
        try:
            return self._config.merged_with(raw).workspace.pvc_name or default
        except ValidationError:
            return default


class OperatorConfigEventHandler:
    """Keeps OperatorConfigStore in sync with the global config resource."""

    def __init__(self, config_store: OperatorConfigStore, name: str, namespace: str) -> None:
        self._config = config_store
        self._name = name
        self._namespace = namespace

    def handle(self, event_type: str, raw: dict[str, Any]) -> None:
        metadata = raw.get("metadata", {})
        if metadata.get("name") != self._name or metadata.get("namespace") != self._namespace:
            return
        if event_type == DELETED:
            self._config.restore()
            return
        try:
            self._config.sync(raw)
        except ValidationError as exc:
            # Keep serving the previous value
            logger.error(
                "Invalid operator configuration: %s",
                exc,
                extra={"event": LogEvent.WATCH_ERROR, "config": self._name},
            )


class EventRouter:
    """Routes watch events to the work queue."""

    def __init__(
        self,
        enqueue: Callable[[WorkspaceKey], None],
        mapper: WorkspaceEventMapper,
        config_handler: OperatorConfigEventHandler,
    ) -> None:
        self._enqueue = enqueue
        self._mapper = mapper
        self._config_handler = config_handler

    def on_workspace(self, event_type: str, old: Workspace | None, new: Workspace) -> None:
        if event_type == MODIFIED and old is not None and not workspace_update_predicate(old, new):
            return
        self._enqueue(new.key)

    async def on_object(self, obj: OwnedObject) -> None:
        match obj.kind:
            case ObjectKind.DEPLOYMENT | ObjectKind.ROUTING:
                keys = owner_to_workspace(obj) or workload_to_workspace(obj)
            case ObjectKind.POD:
                keys = workload_to_workspace(obj)
            case ObjectKind.PERSISTENT_VOLUME_CLAIM:
                keys = await self._mapper.pvc_to_workspaces(obj)
            case ObjectKind.CONFIG_MAP | ObjectKind.SECRET:
                keys = await self._mapper.automount_to_workspaces(obj)
            case _:
                keys = []
        for key in keys:
            self._enqueue(key)

    def on_operator_config(self, event_type: str, raw: dict[str, Any]) -> None:
        self._config_handler.handle(event_type, raw)
