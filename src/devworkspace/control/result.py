"""Reconcile pass results."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from devworkspace.core.domain.workspace import Workspace

if TYPE_CHECKING:
    from devworkspace.control.status import StatusBuilder


@dataclass(frozen=True)
class Result:
    """What the work queue should do with the key after a pass.

    requeue: re-add with the per-key rate limit
    requeue_after: re-add after exactly this many seconds
    """

    requeue: bool = False
    requeue_after: float = 0.0

    @classmethod
    def done(cls) -> "Result":
        return cls()

    @classmethod
    def now(cls) -> "Result":
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> "Result":
        if seconds <= 0:
            return cls(requeue=True)
        return cls(requeue_after=seconds)

    @property
    def label(self) -> str:
        if self.requeue_after > 0:
            return "requeue_after"
        if self.requeue:
            return "requeue"
        return "done"


@dataclass
class PassOutcome:
    """Output of the main body of a pass, consumed by Reconciler.finalize_pass.

    Attributes:
        workspace: Latest stored copy of the workspace (status is written against it)
        result: Queue action for the key
        status: Observations to flush; None when the body already wrote status
        error: Unclassified error to surface after the flush
        skip_status: Do not flush (workspace may already be gone)
    """

    workspace: Workspace
    result: Result
    status: "StatusBuilder | None" = None
    error: Exception | None = None
    skip_status: bool = False
