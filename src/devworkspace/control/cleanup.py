"""Cleanup-on-stop: delete objects owned by a stopped workspace."""

import logging

from devworkspace.core.domain.workspace import WORKSPACE_ID_LABEL, Workspace
from devworkspace.core.errors import NotFoundError
from devworkspace.core.interfaces.cluster import ClusterClient, ObjectKind, OwnedObject
from devworkspace.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

CLEANUP_KINDS = (
    ObjectKind.DEPLOYMENT,
    ObjectKind.CONFIG_MAP,
    ObjectKind.SECRET,
    ObjectKind.ROUTING,
)


def is_solely_owned(obj: OwnedObject, workspace: Workspace) -> bool:
    """True if the workspace is the object's only owner."""
    return obj.owner_uids == [workspace.uid]


async def delete_owned_objects(cluster: ClusterClient, workspace: Workspace) -> bool:
    """Delete workspace-labelled objects owned only by this workspace.

    Objects with no owner, another owner, or several owners are left alone.

    Returns:
        True once no owned object remains
    """
    labels = {WORKSPACE_ID_LABEL: workspace.status.devworkspace_id}
    pending = 0
    for kind in CLEANUP_KINDS:
        for obj in await cluster.list_objects(kind, workspace.namespace, labels):
            if not is_solely_owned(obj, workspace):
                continue
            try:
                await cluster.delete_object(kind, workspace.namespace, obj.name)
            except NotFoundError:
                continue
            pending += 1
            logger.info(
                "Deleted %s %s",
                kind,
                obj.name,
                extra={
                    "event": LogEvent.OBJECT_CLEANED_UP,
                    "workspace": workspace.name,
                    "namespace": workspace.namespace,
                    "kind": kind,
                },
            )
    return pending == 0
