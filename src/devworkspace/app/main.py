"""FastAPI application entry point.

Serves probe and metrics endpoints and runs the controller for the
lifetime of the app:

    startup:  cluster client -> operator config -> collaborators
              -> Reconciler -> ControllerManager + ClusterWatcher
    shutdown: watchers, workers, then HTTP clients
"""

import importlib
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from devworkspace import __version__
from devworkspace.adapters.cluster import (
    ClusterWatcher,
    KubernetesClusterClient,
    create_api_client,
)
from devworkspace.adapters.health import HttpxHealthProbe
from devworkspace.adapters.metrics import PrometheusMetricsSink
from devworkspace.app.config import ControllerConfig, get_settings
from devworkspace.app.logging import setup_logging
from devworkspace.app.metrics import get_metrics_response
from devworkspace.control.manager import ControllerManager
from devworkspace.control.predicates import (
    EventRouter,
    OperatorConfigEventHandler,
    WorkspaceEventMapper,
)
from devworkspace.control.reconciler import Reconciler
from devworkspace.core.interfaces import Collaborators, HealthProbe, MetricsSink
from devworkspace.core.interfaces.cluster import ClusterClient
from devworkspace.core.logging_schema import LogEvent
from devworkspace.core.operator_config import OperatorConfigStore
from devworkspace.core.retryable import with_retry

setup_logging()
logger = logging.getLogger(__name__)

# Builds the provisioning collaborators around the process-wide adapters
CollaboratorsFactory = Callable[[ClusterClient, HealthProbe, MetricsSink], Collaborators]


def load_collaborators_factory(path: str) -> CollaboratorsFactory:
    """Import a "package.module:function" factory.

    Raises:
        ValueError: path is empty or malformed
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"CONTROLLER_COLLABORATORS_FACTORY must be 'package.module:function', got {path!r}"
        )
    return getattr(importlib.import_module(module_name), attr)


async def load_operator_config(
    cluster: ClusterClient, store: OperatorConfigStore, settings: ControllerConfig
) -> None:
    """Initial read of the global config resource; defaults when absent."""
    raw = await with_retry(
        lambda: cluster.get_operator_config(
            settings.operator_namespace, settings.operator_config_name
        )
    )
    if raw is None:
        logger.info(
            "No operator configuration found, using defaults",
            extra={"event": LogEvent.CONFIG_RESTORED, "config": settings.operator_config_name},
        )
        return
    store.sync(raw)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    controller = settings.controller

    api_client = await create_api_client(settings.kubernetes)
    cluster = KubernetesClusterClient(api_client, settings.kubernetes.request_timeout)
    health = HttpxHealthProbe()

    config_store = OperatorConfigStore()
    await load_operator_config(cluster, config_store, controller)

    metrics = PrometheusMetricsSink(config_store.current.routing.default_routing_class)
    factory = load_collaborators_factory(controller.collaborators_factory)
    collaborators = factory(cluster, health, metrics)

    manager = ControllerManager(Reconciler(collaborators, config_store, controller), controller)
    router = EventRouter(
        manager.enqueue,
        WorkspaceEventMapper(cluster, config_store),
        OperatorConfigEventHandler(
            config_store, controller.operator_config_name, controller.operator_namespace
        ),
    )
    watcher = ClusterWatcher(api_client, router, settings.kubernetes, controller.operator_namespace)

    logger.info(
        "Starting controller",
        extra={"event": LogEvent.APP_STARTED, "version": __version__},
    )
    manager.start()
    watcher.start()
    app.state.manager = manager

    try:
        yield
    finally:
        logger.info("Shutting down controller", extra={"event": LogEvent.APP_STOPPED})
        app.state.manager = None
        await watcher.stop()
        await manager.stop()
        await health.close()
        await cluster.close()


app = FastAPI(title="DevWorkspace Controller", version=__version__, lifespan=lifespan)


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "version": __version__}


@app.get("/readyz")
async def readyz(request: Request):
    manager: ControllerManager | None = getattr(request.app.state, "manager", None)
    if manager is None or not manager.healthy():
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready", "queue_depth": manager.depth}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    if not get_settings().metrics.enabled:
        return JSONResponse(status_code=404, content={"detail": "metrics disabled"})
    return get_metrics_response()


def run() -> None:
    """Console entry point."""
    server = get_settings().server
    uvicorn.run(app, host=server.host, port=server.port, log_config=None)


if __name__ == "__main__":
    run()
