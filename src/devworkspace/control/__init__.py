"""DevWorkspace reconciliation core.

Components:
- Reconciler: provisioning pipeline and lifecycle gates (per pass)
- FinalizationController: finalizer-driven teardown
- StatusSynchronizer: merges observed conditions into status
- ControllerManager: work queue and worker pool
"""

from devworkspace.control.finalize import FinalizationController
from devworkspace.control.manager import ControllerManager
from devworkspace.control.reconciler import Reconciler
from devworkspace.control.result import PassOutcome, Result
from devworkspace.control.status import StatusBuilder, StatusSynchronizer

__all__ = [
    "ControllerManager",
    "FinalizationController",
    "PassOutcome",
    "Reconciler",
    "Result",
    "StatusBuilder",
    "StatusSynchronizer",
]
