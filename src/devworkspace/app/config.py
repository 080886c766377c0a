"""Application configuration using pydantic-settings.

Process-level settings only. Cluster-level workspace policy (progress
timeout, cleanup-on-stop, ...) lives in the DevWorkspaceOperatorConfig
resource, see devworkspace.core.operator_config.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KubernetesConfig(BaseSettings):
    """Cluster connection configuration."""

    model_config = SettingsConfigDict(env_prefix="KUBERNETES_")

    in_cluster: bool = Field(default=True)
    kubeconfig: str | None = Field(default=None)  # used when in_cluster=False
    # Empty string watches all namespaces
    watch_namespace: str = Field(default="")
    request_timeout: float = Field(default=30.0)  # seconds
    watch_timeout: int = Field(default=300)  # seconds (server-side watch timeout)


class ControllerConfig(BaseSettings):
    """Reconcile loop configuration.

    Scale guide (N = workspaces changing state at once):
      N < 50   → max_concurrent_reconciles=1
      N < 500  → max_concurrent_reconciles=5
    """

    model_config = SettingsConfigDict(env_prefix="CONTROLLER_")

    max_concurrent_reconciles: int = Field(default=1)

    # External DevWorkspaceOperatorConfig resource
    operator_config_name: str = Field(default="devworkspace-operator-config")
    operator_namespace: str = Field(default="devworkspace-controller")

    # When admission webhooks are off, restricted-access workspaces are refused
    webhooks_enabled: bool = Field(default=True)

    # "package.module:function" returning Collaborators, see devworkspace.app.main
    collaborators_factory: str = Field(default="")

    health_check_timeout: float = Field(default=0.5)  # seconds
    health_check_requeue: float = Field(default=1.0)  # seconds

    # Backoff for unclassified errors (per workspace, reset on success)
    backoff_base_delay: float = Field(default=0.005)  # seconds
    backoff_max_delay: float = Field(default=1000.0)  # seconds


class ServerConfig(BaseSettings):
    """Probe and metrics HTTP server."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)


class MetricsConfig(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    enabled: bool = Field(default=True)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Standard fields added to all logs:
    - schema_version: Log schema version for backwards compatibility
    - service: Service name (devworkspace-controller)

    Rate limiting:
    - Prevents log storms from repeated messages
    - ERROR logs bypass rate limiting (always logged)
    """

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: str = Field(default="INFO")
    schema_version: str = Field(default="1.0")
    slow_threshold_ms: float = Field(default=1000.0)  # reconcile passes above this log WARN
    rate_limit_per_minute: int = Field(default=100)  # max identical messages per minute
    service_name: str = Field(default="devworkspace-controller")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DEVWORKSPACE_",
        env_nested_delimiter="__",
    )

    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_settings() -> Settings:
    return Settings()
