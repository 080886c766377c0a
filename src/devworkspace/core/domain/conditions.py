"""Condition types for DevWorkspace status.

Conditions are K8s-style checkpoints: one entry per type, except warnings
which are keyed by message so several can be reported at once.
"""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ConditionStatus = Literal["True", "False", "Unknown"]


class ConditionType(StrEnum):
    """Condition types written to status.conditions."""

    STARTED = "Started"
    DEVFILE_RESOLVED = "DevfileResolved"
    STORAGE_READY = "StorageReady"
    ROUTING_READY = "RoutingReady"
    IDENTITY_READY = "IdentityReady"
    PULL_SECRETS_READY = "PullSecretsReady"
    SUB_RESOURCES_READY = "SubResourcesReady"
    WORKLOAD_READY = "WorkloadReady"
    READY = "Ready"

    # Not part of the progress order
    FAILED_START = "FailedStart"
    ERROR = "Error"
    WARNING = "DevWorkspaceWarning"
    TERMINATING = "Terminating"


# Progress order used for getFirstFalse/getLastTrue and for sorting
CONDITION_ORDER: tuple[ConditionType, ...] = (
    ConditionType.STARTED,
    ConditionType.DEVFILE_RESOLVED,
    ConditionType.STORAGE_READY,
    ConditionType.ROUTING_READY,
    ConditionType.IDENTITY_READY,
    ConditionType.PULL_SECRETS_READY,
    ConditionType.SUB_RESOURCES_READY,
    ConditionType.WORKLOAD_READY,
    ConditionType.READY,
)


def condition_priority(condition_type: str) -> int:
    """Index of a condition type in CONDITION_ORDER.

    Types outside the progress order (FailedStart, Error, warnings) return -1
    so they sort ahead of progress conditions.
    """
    try:
        return CONDITION_ORDER.index(ConditionType(condition_type))
    except ValueError:
        return -1


class Condition(BaseModel):
    """Single status condition (K8s pattern).

    status is the string "True"/"False"/"Unknown" (K8s convention).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None

    def is_true(self) -> bool:
        return self.status == "True"

    def is_false(self) -> bool:
        return self.status == "False"

    def is_warning(self) -> bool:
        return self.type == ConditionType.WARNING

    def same_observation(self, other: "Condition") -> bool:
        """Check whether two conditions report the same state, ignoring time."""
        return (
            self.status == other.status
            and self.message == other.message
            and self.reason == other.reason
        )

    def sort_key(self) -> tuple[int, str, str]:
        return (condition_priority(self.type), self.type, self.message)
