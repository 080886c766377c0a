"""Cluster-level operator configuration (DevWorkspaceOperatorConfig).

The configuration resource is partial: any field it leaves unset keeps the
built-in default. OperatorConfigStore holds the merged value and is updated
from the config watch (see control.predicates).
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from devworkspace.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RoutingConfig(_CamelModel):
    default_routing_class: str = ""
    cluster_host_suffix: str = ""


class ServiceAccountConfig(_CamelModel):
    # When True the controller uses service_account_name instead of creating one
    disable_creation: bool = False
    service_account_name: str = ""


class WorkspaceConfig(_CamelModel):
    progress_timeout: str = "5m"
    cleanup_on_stop: bool = False
    persist_user_home: bool = False
    service_account: ServiceAccountConfig = Field(default_factory=ServiceAccountConfig)
    image_pull_policy: str = "Always"
    pvc_name: str = "claim-devworkspace"
    storage_class_name: str | None = None
    idle_timeout: str = "15m"
    ignored_unrecoverable_events: list[str] = Field(
        default_factory=lambda: ["FailedScheduling"]
    )


class OperatorConfig(_CamelModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    enable_experimental_features: bool = False


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_config(base: OperatorConfig, raw: dict[str, Any] | None) -> OperatorConfig:
    """Overlay a raw (camelCase) config resource body onto `base`.

    Accepts either the full resource (with a top-level "config" key) or the
    config body itself.
    """
    if not raw:
        return base
    body = raw.get("config", raw)
    merged = _deep_merge(base.model_dump(by_alias=True), body)
    return OperatorConfig.model_validate(merged)


class OperatorConfigStore:
    """Holds the current operator configuration.

    The default is built once; sync() rebuilds from defaults on every update
    so that a field removed from the resource reverts to its default.
    """

    def __init__(self, defaults: OperatorConfig | None = None) -> None:
        self._defaults = defaults or OperatorConfig()
        self._current = self._defaults

    @property
    def current(self) -> OperatorConfig:
        return self._current

    @property
    def defaults(self) -> OperatorConfig:
        return self._defaults

    def sync(self, raw: dict[str, Any] | None) -> OperatorConfig:
        self._current = merge_config(self._defaults, raw)
        logger.info(
            "Operator configuration updated",
            extra={
                "event": LogEvent.CONFIG_SYNCED,
                "progress_timeout": self._current.workspace.progress_timeout,
                "cleanup_on_stop": self._current.workspace.cleanup_on_stop,
            },
        )
        return self._current

    def restore(self) -> OperatorConfig:
        self._current = self._defaults
        logger.info(
            "Operator configuration deleted, restored defaults",
            extra={"event": LogEvent.CONFIG_RESTORED},
        )
        return self._current

    def merged_with(self, raw: dict[str, Any] | None) -> OperatorConfig:
        """Current config with a workspace-specific override applied."""
        return merge_config(self._current, raw)
