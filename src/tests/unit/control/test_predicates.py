"""Tests for watch event filtering and mapping."""

from unittest.mock import MagicMock

import pytest

from devworkspace.control.predicates import (
    ADDED,
    DELETED,
    MODIFIED,
    EventRouter,
    OperatorConfigEventHandler,
    WorkspaceEventMapper,
    owner_to_workspace,
    workload_to_workspace,
    workspace_update_predicate,
)
from devworkspace.core.domain.workspace import (
    EXTERNAL_CONFIG_ATTRIBUTE,
    MOUNT_TO_WORKSPACE_LABEL,
    PVC_TYPE_LABEL,
    STORAGE_TYPE_ATTRIBUTE,
    WORKSPACE_ID_LABEL,
    WORKSPACE_NAME_LABEL,
    OwnerReference,
    Phase,
)
from devworkspace.core.interfaces import ObjectKind, OwnedObject
from devworkspace.core.operator_config import OperatorConfigStore
from tests.factories import WORKSPACE_ID, make_workspace

CONFIG_NAME = "devworkspace-operator-config"
CONFIG_NAMESPACE = "devworkspace-controller"


def pvc(name: str = "claim-devworkspace", pvc_type: str | None = "per-user", owners=()):
    labels = {} if pvc_type is None else {PVC_TYPE_LABEL: pvc_type}
    return OwnedObject(
        kind=ObjectKind.PERSISTENT_VOLUME_CLAIM,
        name=name,
        namespace="user-ns",
        owners=list(owners),
        labels=labels,
    )


@pytest.fixture
def mapper(collaborators, config_store) -> WorkspaceEventMapper:
    return WorkspaceEventMapper(collaborators.cluster, config_store)


class TestWorkspaceUpdatePredicate:
    def test_status_only_change_ignored(self) -> None:
        old = make_workspace(phase=Phase.STARTING)
        new = make_workspace(phase=Phase.RUNNING)
        assert workspace_update_predicate(old, new) is False

    def test_generation_change(self) -> None:
        assert workspace_update_predicate(make_workspace(), make_workspace(generation=2))

    def test_annotation_change(self) -> None:
        new = make_workspace(annotations={"example.com/note": "x"})
        assert workspace_update_predicate(make_workspace(), new)

    def test_finalizer_change(self) -> None:
        new = make_workspace(finalizers=["storage.controller.devfile.io"])
        assert workspace_update_predicate(make_workspace(), new)

    def test_failed_ignores_metadata_changes(self) -> None:
        """A Failed workspace waits for the user to change the spec."""
        old = make_workspace(phase=Phase.FAILED)
        new = make_workspace(phase=Phase.FAILED, annotations={"example.com/note": "x"})
        assert workspace_update_predicate(old, new) is False

    def test_failed_reacts_to_started(self) -> None:
        old = make_workspace(phase=Phase.FAILED)
        new = make_workspace(phase=Phase.FAILED, started=False)
        assert workspace_update_predicate(old, new)

    def test_failed_reacts_to_deletion(self) -> None:
        old = make_workspace(phase=Phase.FAILED)
        new = make_workspace(phase=Phase.FAILED, deleting=True)
        assert workspace_update_predicate(old, new)


class TestWorkloadMapping:
    def test_labelled_deployment(self) -> None:
        obj = OwnedObject(
            kind=ObjectKind.DEPLOYMENT,
            name=WORKSPACE_ID,
            namespace="user-ns",
            labels={WORKSPACE_NAME_LABEL: "my-workspace", WORKSPACE_ID_LABEL: WORKSPACE_ID},
        )
        assert workload_to_workspace(obj) == [("user-ns", "my-workspace")]

    def test_controller_owner(self) -> None:
        owners = [
            OwnerReference(kind="DevWorkspace", name="not-controller", uid="u0"),
            OwnerReference(kind="DevWorkspace", name="my-workspace", uid="u1", controller=True),
        ]
        obj = OwnedObject(
            kind=ObjectKind.ROUTING, name="routing", namespace="user-ns", owners=owners
        )
        assert owner_to_workspace(obj) == [("user-ns", "my-workspace")]

    def test_no_controller_owner(self) -> None:
        obj = OwnedObject(kind=ObjectKind.DEPLOYMENT, name="d", namespace="user-ns")
        assert owner_to_workspace(obj) == []

    def test_missing_id_label(self) -> None:
        obj = OwnedObject(
            kind=ObjectKind.POD,
            name="pod",
            namespace="user-ns",
            labels={WORKSPACE_NAME_LABEL: "my-workspace"},
        )
        assert workload_to_workspace(obj) == []


class TestPvcMapping:
    async def test_unlabelled_pvc_ignored(self, mapper, collaborators) -> None:
        assert await mapper.pvc_to_workspaces(pvc(pvc_type=None)) == []
        collaborators.cluster.list_workspaces.assert_not_called()

    async def test_per_workspace_pvc_maps_to_owner(self, mapper) -> None:
        owner = OwnerReference(kind="DevWorkspace", name="my-workspace", uid="u1")
        obj = pvc(name="storage-workspace1", pvc_type="per-workspace", owners=[owner])

        assert await mapper.pvc_to_workspaces(obj) == [("user-ns", "my-workspace")]

    async def test_common_pvc_maps_to_common_storage_users(self, mapper, collaborators) -> None:
        collaborators.cluster.list_workspaces.return_value = [
            make_workspace(name="a"),
            make_workspace(name="b", attributes={STORAGE_TYPE_ATTRIBUTE: "ephemeral"}),
            make_workspace(name="c", attributes={STORAGE_TYPE_ATTRIBUTE: "common"}),
        ]

        keys = await mapper.pvc_to_workspaces(pvc())

        assert keys == [("user-ns", "a"), ("user-ns", "c")]

    async def test_other_pvc_name_ignored(self, mapper, collaborators) -> None:
        collaborators.cluster.list_workspaces.return_value = [make_workspace()]

        assert await mapper.pvc_to_workspaces(pvc(name="unrelated")) == []

    async def test_external_config_pvc_name(self, mapper, collaborators) -> None:
        collaborators.cluster.list_workspaces.return_value = [
            make_workspace(
                attributes={EXTERNAL_CONFIG_ATTRIBUTE: {"name": "custom", "namespace": "cfg"}}
            )
        ]
        collaborators.cluster.get_operator_config.return_value = {
            "config": {"workspace": {"pvcName": "custom-claim"}}
        }

        assert await mapper.pvc_to_workspaces(pvc(name="custom-claim")) == [
            ("user-ns", "my-workspace")
        ]


class TestAutomountMapping:
    async def test_only_started_workspaces(self, mapper, collaborators) -> None:
        collaborators.cluster.list_workspaces.return_value = [
            make_workspace(name="running"),
            make_workspace(name="stopped", started=False),
        ]
        obj = OwnedObject(
            kind=ObjectKind.SECRET,
            name="git-credentials",
            namespace="user-ns",
            labels={MOUNT_TO_WORKSPACE_LABEL: "true"},
        )

        assert await mapper.automount_to_workspaces(obj) == [("user-ns", "running")]

    async def test_unlabelled_object_ignored(self, mapper, collaborators) -> None:
        obj = OwnedObject(kind=ObjectKind.CONFIG_MAP, name="cm", namespace="user-ns")

        assert await mapper.automount_to_workspaces(obj) == []
        collaborators.cluster.list_workspaces.assert_not_called()


class TestOperatorConfigEventHandler:
    def _raw(self, name: str = CONFIG_NAME, timeout: object = "10m") -> dict:
        return {
            "metadata": {"name": name, "namespace": CONFIG_NAMESPACE},
            "config": {"workspace": {"progressTimeout": timeout}},
        }

    def test_sync_on_update(self) -> None:
        store = OperatorConfigStore()
        handler = OperatorConfigEventHandler(store, CONFIG_NAME, CONFIG_NAMESPACE)

        handler.handle(MODIFIED, self._raw())

        assert store.current.workspace.progress_timeout == "10m"

    def test_other_resource_ignored(self) -> None:
        store = OperatorConfigStore()
        handler = OperatorConfigEventHandler(store, CONFIG_NAME, CONFIG_NAMESPACE)

        handler.handle(ADDED, self._raw(name="other"))

        assert store.current.workspace.progress_timeout == "5m"

    def test_delete_restores_defaults(self) -> None:
        store = OperatorConfigStore()
        handler = OperatorConfigEventHandler(store, CONFIG_NAME, CONFIG_NAMESPACE)
        handler.handle(ADDED, self._raw())

        handler.handle(DELETED, self._raw())

        assert store.current == store.defaults

    def test_invalid_config_keeps_previous(self) -> None:
        store = OperatorConfigStore()
        handler = OperatorConfigEventHandler(store, CONFIG_NAME, CONFIG_NAMESPACE)
        handler.handle(ADDED, self._raw())

        handler.handle(MODIFIED, self._raw(timeout=["not", "a", "string"]))

        assert store.current.workspace.progress_timeout == "10m"


class TestEventRouter:
    @pytest.fixture
    def enqueue(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def router(self, enqueue, mapper) -> EventRouter:
        handler = OperatorConfigEventHandler(OperatorConfigStore(), CONFIG_NAME, CONFIG_NAMESPACE)
        return EventRouter(enqueue, mapper, handler)

    def test_added_workspace_enqueued(self, router, enqueue) -> None:
        router.on_workspace(ADDED, None, make_workspace())
        enqueue.assert_called_once_with(("user-ns", "my-workspace"))

    def test_status_update_filtered(self, router, enqueue) -> None:
        router.on_workspace(
            MODIFIED, make_workspace(phase=Phase.STARTING), make_workspace(phase=Phase.RUNNING)
        )
        enqueue.assert_not_called()

    async def test_deployment_routes_to_workspace(self, router, enqueue) -> None:
        obj = OwnedObject(
            kind=ObjectKind.DEPLOYMENT,
            name=WORKSPACE_ID,
            namespace="user-ns",
            labels={WORKSPACE_NAME_LABEL: "my-workspace", WORKSPACE_ID_LABEL: WORKSPACE_ID},
        )

        await router.on_object(obj)

        enqueue.assert_called_once_with(("user-ns", "my-workspace"))

    async def test_unknown_kind_ignored(self, router, enqueue) -> None:
        await router.on_object(OwnedObject(kind="Service", name="svc", namespace="user-ns"))
        enqueue.assert_not_called()
