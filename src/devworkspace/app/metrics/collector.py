"""Prometheus metrics definitions for the DevWorkspace controller."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================

# MEDIUM: reconcile passes, external API calls (5ms ~ 60s)
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)  # 14 buckets

# STARTUP: workspace start to ready (1s ~ 10m)
_BUCKETS_STARTUP = (
    1, 3, 5, 10, 15,
    30, 45, 60, 120, 180,
    300, 600,
)  # 12 buckets

# =============================================================================
# Workspace Lifecycle Metrics
# =============================================================================
# routing_class is low cardinality (cluster-configured routing classes)

WORKSPACE_STARTS_TOTAL = Counter(
    "devworkspace_starts_total",
    "Workspaces that entered the Starting phase",
    ["routing_class"],
)

WORKSPACE_RUNNING_TOTAL = Counter(
    "devworkspace_running_total",
    "Workspaces that reached the Running phase",
    ["routing_class"],
)

WORKSPACE_FAILS_TOTAL = Counter(
    "devworkspace_fails_total",
    "Workspaces that failed to start",
    ["routing_class", "reason"],
)

WORKSPACE_STARTUP_TIME = Histogram(
    "devworkspace_startup_time_seconds",
    "Time from Started to Ready condition",
    ["routing_class"],
    buckets=_BUCKETS_STARTUP,
)

# =============================================================================
# Reconcile Metrics
# =============================================================================

RECONCILE_TOTAL = Counter(
    "devworkspace_reconcile_total",
    "Reconcile passes by result",
    ["result"],  # done, requeue, requeue_after, error
)

RECONCILE_DURATION = Histogram(
    "devworkspace_reconcile_duration_seconds",
    "Reconcile pass duration",
    buckets=_BUCKETS_MEDIUM,
)

WORKQUEUE_DEPTH = Gauge(
    "devworkspace_workqueue_depth",
    "Workspaces waiting in the reconcile queue",
)
