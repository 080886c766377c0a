"""Error types for the DevWorkspace controller.

Collaborators report how a failure should be handled by raising one of the
step errors below. Anything else is treated as unclassified and goes back
to the work queue for default backoff.

Usage:
    from devworkspace.core.errors import FailError, RetryError

    # Transient: try again in 5 seconds
    raise RetryError("Waiting for PVC to be bound", requeue_after=5.0)

    # Terminal for this start attempt
    raise FailError("Unsupported storage type", FailureReason.BAD_REQUEST)
"""

from enum import Enum

from devworkspace.core.domain.workspace import FailureReason


class ErrorCode(str, Enum):
    """Error codes."""

    RETRY = "RETRY"
    FAIL = "FAIL"
    WARNING = "WARNING"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_DURATION = "INVALID_DURATION"


class DevWorkspaceError(Exception):
    """Base exception for the controller.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
    """

    def __init__(self, code: ErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


# =============================================================================
# Step errors (classified by devworkspace.core.retryable)
# =============================================================================


class RetryError(DevWorkspaceError):
    """Transient failure; the step asks to be retried after a delay.

    Attributes:
        requeue_after: Delay in seconds chosen by the failing collaborator
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        requeue_after: float = 0.0,
        cause: Exception | None = None,
    ) -> None:
        self.requeue_after = requeue_after
        self.cause = cause
        super().__init__(ErrorCode.RETRY, message)


class FailError(DevWorkspaceError):
    """Failure that ends the current start attempt.

    Surfaced to the user through the FailedStart (or Error) condition.
    """

    def __init__(
        self,
        message: str,
        reason: FailureReason = FailureReason.UNKNOWN,
        cause: Exception | None = None,
    ) -> None:
        self.reason = reason
        self.cause = cause
        super().__init__(ErrorCode.FAIL, message)


class WarningError(DevWorkspaceError):
    """Non-blocking problem reported as a warning condition."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.WARNING, message)


# =============================================================================
# Cluster errors (raised by ClusterClient implementations)
# =============================================================================


class NotFoundError(DevWorkspaceError):
    """Requested object does not exist."""

    def __init__(self, message: str = "Object not found") -> None:
        super().__init__(ErrorCode.NOT_FOUND, message)


class ConflictError(DevWorkspaceError):
    """Write rejected because the object's resourceVersion is stale."""

    def __init__(self, message: str = "Object has been modified") -> None:
        super().__init__(ErrorCode.CONFLICT, message)


class InvalidDurationError(DevWorkspaceError, ValueError):
    """Duration string could not be parsed."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(ErrorCode.INVALID_DURATION, f"invalid duration {value!r}")
