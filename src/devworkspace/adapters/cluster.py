"""Kubernetes cluster adapter (kubernetes_asyncio).

KubernetesClusterClient implements ClusterClient over the API server.
ClusterWatcher streams watch events into an EventRouter.

API errors are translated:
- 404 -> NotFoundError
- 409 -> ConflictError
- 429, 5xx -> RetryError
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any

from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.api_client import ApiClient
from kubernetes_asyncio.client.exceptions import ApiException

from devworkspace.app.config import KubernetesConfig
from devworkspace.control.predicates import EventRouter
from devworkspace.core.domain.workspace import (
    MOUNT_TO_WORKSPACE_LABEL,
    PVC_TYPE_LABEL,
    WORKSPACE_ID_LABEL,
    OwnerReference,
    Workspace,
)
from devworkspace.core.errors import ConflictError, NotFoundError, RetryError
from devworkspace.core.interfaces.cluster import ClusterClient, ObjectKind, OwnedObject
from devworkspace.core.logging_schema import LogEvent
from devworkspace.core.retryable import DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

WORKSPACE_GROUP = "workspace.devfile.io"
WORKSPACE_VERSION = "v1alpha2"
WORKSPACE_PLURAL = "devworkspaces"

CONTROLLER_GROUP = "controller.devfile.io"
CONTROLLER_VERSION = "v1alpha1"
CONFIG_PLURAL = "devworkspaceoperatorconfigs"
ROUTING_PLURAL = "devworkspaceroutings"

NAMESPACE_TERMINATING = "Terminating"


@contextmanager
def _api_errors(what: str) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        if exc.status == 404:
            raise NotFoundError(f"{what} not found") from exc
        if exc.status == 409:
            raise ConflictError(f"{what}: {exc.reason}") from exc
        if exc.status == 429 or (exc.status is not None and exc.status >= 500):
            raise RetryError(
                f"{what}: {exc.status} {exc.reason}",
                requeue_after=DEFAULT_RETRY_DELAY,
                cause=exc,
            ) from exc
        raise


def _label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def _owned_from_model(kind: str, item: Any) -> OwnedObject:
    """OwnedObject from a typed kubernetes_asyncio model (V1Deployment, ...)."""
    metadata = item.metadata
    owners = [
        OwnerReference(
            api_version=ref.api_version or "",
            kind=ref.kind or "",
            name=ref.name or "",
            uid=ref.uid,
            controller=bool(ref.controller),
        )
        for ref in metadata.owner_references or []
    ]
    return OwnedObject(
        kind=kind,
        name=metadata.name,
        namespace=metadata.namespace,
        owners=owners,
        labels=dict(metadata.labels or {}),
    )


def _owned_from_dict(kind: str, raw: dict[str, Any]) -> OwnedObject:
    """OwnedObject from a custom object body."""
    metadata = raw.get("metadata", {})
    return OwnedObject(
        kind=kind,
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        owners=[OwnerReference.model_validate(ref) for ref in metadata.get("ownerReferences", [])],
        labels=dict(metadata.get("labels") or {}),
    )


def _to_body(workspace: Workspace) -> dict[str, Any]:
    return workspace.model_dump(by_alias=True, mode="json", exclude_none=True)


async def create_api_client(settings: KubernetesConfig) -> ApiClient:
    """Load cluster credentials and build the shared ApiClient."""
    if settings.in_cluster:
        config.load_incluster_config()
    else:
        await config.load_kube_config(config_file=settings.kubeconfig)
    return ApiClient()


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the Kubernetes API."""

    def __init__(self, api_client: ApiClient, request_timeout: float = 30.0) -> None:
        self._api_client = api_client
        self._timeout = request_timeout
        self._custom = client.CustomObjectsApi(api_client)
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)

    async def close(self) -> None:
        await self._api_client.close()

    # =========================================================================
    # Workspaces
    # =========================================================================

    async def get_workspace(self, namespace: str, name: str) -> Workspace | None:
        try:
            with _api_errors(f"DevWorkspace {namespace}/{name}"):
                raw = await self._custom.get_namespaced_custom_object(
                    WORKSPACE_GROUP,
                    WORKSPACE_VERSION,
                    namespace,
                    WORKSPACE_PLURAL,
                    name,
                    _request_timeout=self._timeout,
                )
        except NotFoundError:
            return None
        return Workspace.model_validate(raw)

    async def list_workspaces(self, namespace: str) -> list[Workspace]:
        with _api_errors(f"DevWorkspaces in {namespace}"):
            raw = await self._custom.list_namespaced_custom_object(
                WORKSPACE_GROUP,
                WORKSPACE_VERSION,
                namespace,
                WORKSPACE_PLURAL,
                _request_timeout=self._timeout,
            )
        return [Workspace.model_validate(item) for item in raw.get("items", [])]

    async def update_workspace(self, workspace: Workspace) -> Workspace:
        with _api_errors(f"DevWorkspace {workspace.namespace}/{workspace.name}"):
            raw = await self._custom.replace_namespaced_custom_object(
                WORKSPACE_GROUP,
                WORKSPACE_VERSION,
                workspace.namespace,
                WORKSPACE_PLURAL,
                workspace.name,
                _to_body(workspace),
                _request_timeout=self._timeout,
            )
        return Workspace.model_validate(raw)

    async def update_status(self, workspace: Workspace) -> Workspace:
        with _api_errors(f"DevWorkspace {workspace.namespace}/{workspace.name} status"):
            raw = await self._custom.replace_namespaced_custom_object_status(
                WORKSPACE_GROUP,
                WORKSPACE_VERSION,
                workspace.namespace,
                WORKSPACE_PLURAL,
                workspace.name,
                _to_body(workspace),
                _request_timeout=self._timeout,
            )
        return Workspace.model_validate(raw)

    async def patch_started(self, workspace: Workspace, started: bool) -> None:
        with _api_errors(f"DevWorkspace {workspace.namespace}/{workspace.name}"):
            await self._custom.patch_namespaced_custom_object(
                WORKSPACE_GROUP,
                WORKSPACE_VERSION,
                workspace.namespace,
                WORKSPACE_PLURAL,
                workspace.name,
                {"spec": {"started": started}},
                _request_timeout=self._timeout,
            )

    # =========================================================================
    # Namespaces and owned objects
    # =========================================================================

    async def is_namespace_terminating(self, namespace: str) -> bool:
        try:
            with _api_errors(f"Namespace {namespace}"):
                ns = await self._core.read_namespace(namespace, _request_timeout=self._timeout)
        except NotFoundError:
            return True
        return bool(ns.status and ns.status.phase == NAMESPACE_TERMINATING)

    async def list_objects(
        self, kind: ObjectKind, namespace: str, labels: dict[str, str]
    ) -> list[OwnedObject]:
        selector = _label_selector(labels)
        with _api_errors(f"{kind} in {namespace}"):
            if kind == ObjectKind.ROUTING:
                raw = await self._custom.list_namespaced_custom_object(
                    CONTROLLER_GROUP,
                    CONTROLLER_VERSION,
                    namespace,
                    ROUTING_PLURAL,
                    label_selector=selector,
                    _request_timeout=self._timeout,
                )
                return [_owned_from_dict(kind, item) for item in raw.get("items", [])]

            result = await self._list_fn(kind)(
                namespace, label_selector=selector, _request_timeout=self._timeout
            )
        return [_owned_from_model(kind, item) for item in result.items]

    async def delete_object(self, kind: ObjectKind, namespace: str, name: str) -> None:
        with _api_errors(f"{kind} {namespace}/{name}"):
            if kind == ObjectKind.ROUTING:
                await self._custom.delete_namespaced_custom_object(
                    CONTROLLER_GROUP,
                    CONTROLLER_VERSION,
                    namespace,
                    ROUTING_PLURAL,
                    name,
                    propagation_policy="Background",
                    _request_timeout=self._timeout,
                )
                return
            await self._delete_fn(kind)(
                name,
                namespace,
                propagation_policy="Background",
                _request_timeout=self._timeout,
            )

    async def get_operator_config(self, namespace: str, name: str) -> dict[str, Any] | None:
        try:
            with _api_errors(f"DevWorkspaceOperatorConfig {namespace}/{name}"):
                return await self._custom.get_namespaced_custom_object(
                    CONTROLLER_GROUP,
                    CONTROLLER_VERSION,
                    namespace,
                    CONFIG_PLURAL,
                    name,
                    _request_timeout=self._timeout,
                )
        except NotFoundError:
            return None

    def _list_fn(self, kind: ObjectKind) -> Callable[..., Awaitable[Any]]:
        match kind:
            case ObjectKind.DEPLOYMENT:
                return self._apps.list_namespaced_deployment
            case ObjectKind.CONFIG_MAP:
                return self._core.list_namespaced_config_map
            case ObjectKind.SECRET:
                return self._core.list_namespaced_secret
            case ObjectKind.POD:
                return self._core.list_namespaced_pod
            case ObjectKind.PERSISTENT_VOLUME_CLAIM:
                return self._core.list_namespaced_persistent_volume_claim
        raise ValueError(f"Unsupported kind: {kind}")

    def _delete_fn(self, kind: ObjectKind) -> Callable[..., Awaitable[Any]]:
        match kind:
            case ObjectKind.DEPLOYMENT:
                return self._apps.delete_namespaced_deployment
            case ObjectKind.CONFIG_MAP:
                return self._core.delete_namespaced_config_map
            case ObjectKind.SECRET:
                return self._core.delete_namespaced_secret
            case ObjectKind.POD:
                return self._core.delete_namespaced_pod
            case ObjectKind.PERSISTENT_VOLUME_CLAIM:
                return self._core.delete_namespaced_persistent_volume_claim
        raise ValueError(f"Unsupported kind: {kind}")


class ClusterWatcher:
    """Streams watch events for every source the controller reacts to.

    Each source runs in its own task and restarts after errors or when the
    server closes the watch.
    """

    RESTART_DELAY = 1.0

    def __init__(
        self,
        api_client: ApiClient,
        router: EventRouter,
        settings: KubernetesConfig,
        operator_namespace: str,
    ) -> None:
        self._router = router
        self._settings = settings
        self._operator_namespace = operator_namespace
        self._custom = client.CustomObjectsApi(api_client)
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)
        # Last seen copy per workspace, for update filtering
        self._workspaces: dict[tuple[str, str], Workspace] = {}
        self._tasks: list[asyncio.Task[None]] = []

    def start(self) -> None:
        namespace = self._settings.watch_namespace
        sources: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("workspaces", self._watch_workspaces),
            ("operator-config", self._watch_operator_config),
            ("routings", self._watch_routings),
            ("deployments", lambda: self._watch_objects(
                ObjectKind.DEPLOYMENT,
                self._apps.list_namespaced_deployment if namespace else self._apps.list_deployment_for_all_namespaces,
                WORKSPACE_ID_LABEL,
            )),
            ("pods", lambda: self._watch_objects(
                ObjectKind.POD,
                self._core.list_namespaced_pod if namespace else self._core.list_pod_for_all_namespaces,
                WORKSPACE_ID_LABEL,
            )),
            ("pvcs", lambda: self._watch_objects(
                ObjectKind.PERSISTENT_VOLUME_CLAIM,
                self._core.list_namespaced_persistent_volume_claim
                if namespace
                else self._core.list_persistent_volume_claim_for_all_namespaces,
                PVC_TYPE_LABEL,
            )),
            ("configmaps", lambda: self._watch_objects(
                ObjectKind.CONFIG_MAP,
                self._core.list_namespaced_config_map if namespace else self._core.list_config_map_for_all_namespaces,
                f"{MOUNT_TO_WORKSPACE_LABEL}=true",
            )),
            ("secrets", lambda: self._watch_objects(
                ObjectKind.SECRET,
                self._core.list_namespaced_secret if namespace else self._core.list_secret_for_all_namespaces,
                f"{MOUNT_TO_WORKSPACE_LABEL}=true",
            )),
        ]
        for name, run in sources:
            self._tasks.append(asyncio.create_task(self._run_forever(name, run), name=f"watch-{name}"))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def _run_forever(self, name: str, run: Callable[[], Awaitable[None]]) -> None:
        while True:
            try:
                await run()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Watch %s failed: %s",
                    name,
                    exc,
                    extra={"event": LogEvent.WATCH_ERROR, "source": name},
                )
            await asyncio.sleep(self.RESTART_DELAY)

    def _namespace_args(self) -> tuple[Any, ...]:
        return (self._settings.watch_namespace,) if self._settings.watch_namespace else ()

    async def _watch_workspaces(self) -> None:
        if self._settings.watch_namespace:
            list_fn, args = self._custom.list_namespaced_custom_object, (
                WORKSPACE_GROUP, WORKSPACE_VERSION, self._settings.watch_namespace, WORKSPACE_PLURAL,
            )
        else:
            list_fn, args = self._custom.list_cluster_custom_object, (
                WORKSPACE_GROUP, WORKSPACE_VERSION, WORKSPACE_PLURAL,
            )
        async with watch.Watch() as stream:
            async for event in stream.stream(
                list_fn, *args, timeout_seconds=self._settings.watch_timeout
            ):
                workspace = Workspace.model_validate(event["object"])
                if event["type"] == "DELETED":
                    old = self._workspaces.pop(workspace.key, None)
                else:
                    old = self._workspaces.get(workspace.key)
                    self._workspaces[workspace.key] = workspace
                self._router.on_workspace(event["type"], old, workspace)

    async def _watch_operator_config(self) -> None:
        async with watch.Watch() as stream:
            async for event in stream.stream(
                self._custom.list_namespaced_custom_object,
                CONTROLLER_GROUP,
                CONTROLLER_VERSION,
                self._operator_namespace,
                CONFIG_PLURAL,
                timeout_seconds=self._settings.watch_timeout,
            ):
                self._router.on_operator_config(event["type"], event["object"])

    async def _watch_routings(self) -> None:
        if self._settings.watch_namespace:
            list_fn, args = self._custom.list_namespaced_custom_object, (
                CONTROLLER_GROUP, CONTROLLER_VERSION, self._settings.watch_namespace, ROUTING_PLURAL,
            )
        else:
            list_fn, args = self._custom.list_cluster_custom_object, (
                CONTROLLER_GROUP, CONTROLLER_VERSION, ROUTING_PLURAL,
            )
        async with watch.Watch() as stream:
            async for event in stream.stream(
                list_fn, *args, timeout_seconds=self._settings.watch_timeout
            ):
                await self._router.on_object(_owned_from_dict(ObjectKind.ROUTING, event["object"]))

    async def _watch_objects(
        self, kind: ObjectKind, list_fn: Callable[..., Awaitable[Any]], label_selector: str
    ) -> None:
        async with watch.Watch() as stream:
            async for event in stream.stream(
                list_fn,
                *self._namespace_args(),
                label_selector=label_selector,
                timeout_seconds=self._settings.watch_timeout,
            ):
                await self._router.on_object(_owned_from_model(kind, event["object"]))
