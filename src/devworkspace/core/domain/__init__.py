"""Domain types for DevWorkspace resources."""

from devworkspace.core.domain.conditions import (
    CONDITION_ORDER,
    Condition,
    ConditionType,
)
from devworkspace.core.domain.workspace import (
    FailureReason,
    Finalizer,
    Phase,
    Workspace,
)

__all__ = [
    "CONDITION_ORDER",
    "Condition",
    "ConditionType",
    "FailureReason",
    "Finalizer",
    "Phase",
    "Workspace",
]
