"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (devworkspace-controller)
- event: Event type (reconcile_complete, step_failed, etc.)
- trace_id: Reconcile pass ID
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- workspace: Workspace name
- namespace: Workspace namespace
- devworkspace_id: Workspace identifier
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Reconcile events
    RECONCILE_STARTED = "reconcile_started"
    RECONCILE_COMPLETE = "reconcile_complete"
    RECONCILE_SLOW = "reconcile_slow"
    RECONCILE_ERROR = "reconcile_error"
    PHASE_CHANGED = "phase_changed"
    STATUS_CONFLICT = "status_conflict"

    # Pipeline step events
    STEP_RETRY = "step_retry"
    STEP_FAILED = "step_failed"
    STEP_WARNING = "step_warning"
    START_TIMEOUT = "start_timeout"
    HEALTH_PROBE_FAILED = "health_probe_failed"

    # Lifecycle events
    ID_ASSIGNED = "id_assigned"
    WORKSPACE_STOPPING = "workspace_stopping"
    WORKSPACE_STOPPED = "workspace_stopped"
    FINALIZER_ADDED = "finalizer_added"
    FINALIZER_REMOVED = "finalizer_removed"
    OBJECT_CLEANED_UP = "object_cleaned_up"

    # Configuration events
    CONFIG_SYNCED = "config_synced"
    CONFIG_RESTORED = "config_restored"

    # Process events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    WATCH_ERROR = "watch_error"


class ErrorClass(StrEnum):
    """Error classification for structured error logging.

    Use these in the 'error_class' extra field to enable
    filtering by error type and setting up alerts.
    """

    RETRY = "retry"  # Transient, requeued with delay
    FAIL = "fail"  # Terminal for this start attempt
    WARNING = "warning"  # Non-blocking
    UNCLASSIFIED = "unclassified"  # Propagated to work queue backoff
