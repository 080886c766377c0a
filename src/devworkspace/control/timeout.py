"""Progress timeout detection.

Durations use Go-style strings ("5m", "1h30m", "90s", "500ms") as found in
DevWorkspaceOperatorConfig.
"""

import re
from datetime import datetime, timedelta

from devworkspace.control.status import StatusBuilder
from devworkspace.core.domain.conditions import ConditionType
from devworkspace.core.domain.workspace import Phase, Workspace
from devworkspace.core.errors import InvalidDurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go duration string.

    Raises:
        InvalidDurationError: value is not a valid duration
    """
    text = value.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise InvalidDurationError(value)

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise InvalidDurationError(value)
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise InvalidDurationError(value)
    return timedelta(seconds=sign * seconds)


def _current_step(workspace: Workspace, status: StatusBuilder | None) -> str:
    if status is not None:
        if (first_false := status.get_first_false()) is not None:
            return first_false.message or first_false.type
        if (last_true := status.get_last_true()) is not None:
            return last_true.message or last_true.type
    return str(workspace.status.phase)


def check_start_timeout(
    workspace: Workspace,
    progress_timeout: str,
    now: datetime,
    status: StatusBuilder | None = None,
) -> str | None:
    """Check whether a Starting workspace stopped making progress.

    Progress is the most recent condition transition. The returned message
    names the step the workspace is stuck on, taken from this pass's
    observations when given.

    Returns:
        Timeout message, or None if not timed out (or not Starting)

    Raises:
        InvalidDurationError: progress_timeout cannot be parsed
    """
    if workspace.status.phase != Phase.STARTING:
        return None
    timeout = parse_duration(progress_timeout)

    transitions = [
        c.last_transition_time
        for c in workspace.status.conditions
        if c.last_transition_time is not None
    ]
    if not transitions:
        return None
    if max(transitions) + timeout >= now:
        return None
    return (
        f"DevWorkspace failed to progress past step '{_current_step(workspace, status)}' "
        f"for longer than timeout ({progress_timeout})"
    )


def check_failing_timeout(workspace: Workspace, progress_timeout: str, now: datetime) -> bool:
    """Check whether a Failing workspace has been failing for longer than the timeout.

    Anchored on the FailedStart condition, so a debug-held workspace is
    kept for a full timeout after it failed.

    Raises:
        InvalidDurationError: progress_timeout cannot be parsed
    """
    if workspace.status.phase != Phase.FAILING:
        return False
    timeout = parse_duration(progress_timeout)

    failed = workspace.status.get_condition(ConditionType.FAILED_START)
    if failed is None or failed.last_transition_time is None:
        return False
    return failed.last_transition_time + timeout < now
