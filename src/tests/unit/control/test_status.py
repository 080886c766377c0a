"""Tests for StatusBuilder, condition merging and StatusSynchronizer."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from devworkspace.control.status import (
    StatusBuilder,
    StatusSynchronizer,
    startup_seconds,
    summary_message,
    sync_conditions,
)
from devworkspace.core.domain.conditions import ConditionType
from devworkspace.core.domain.workspace import FailureReason, Phase
from devworkspace.core.interfaces import ClusterClient, MetricsSink
from tests.factories import MAIN_URL, NOW, make_condition, make_workspace

EARLIER = NOW - timedelta(minutes=3)


class TestStatusBuilder:
    """StatusBuilder is immutable; setters return new builders."""

    def test_setters_do_not_mutate(self) -> None:
        base = StatusBuilder(phase=Phase.STARTING)

        updated = base.set_condition_true(ConditionType.STARTED, "starting")

        assert base.conditions == {}
        assert updated.conditions[ConditionType.STARTED].message == "starting"

    def test_fail_sets_failing_and_condition(self) -> None:
        status = StatusBuilder(phase=Phase.STARTING).fail("boom", FailureReason.BAD_REQUEST)

        assert status.phase == Phase.FAILING
        failed = status.conditions[ConditionType.FAILED_START]
        assert failed.is_true()
        assert failed.reason == FailureReason.BAD_REQUEST

    def test_duplicate_warnings_collapse(self) -> None:
        status = StatusBuilder(phase=Phase.STARTING).add_warning("w").add_warning("w")
        assert len(status.warnings) == 1

    def test_first_false_follows_progress_order(self) -> None:
        status = (
            StatusBuilder(phase=Phase.STARTING)
            .set_condition_false(ConditionType.WORKLOAD_READY, "deployment")
            .set_condition_false(ConditionType.STORAGE_READY, "storage")
        )
        assert status.get_first_false().message == "storage"

    def test_last_true_follows_progress_order(self) -> None:
        status = (
            StatusBuilder(phase=Phase.STARTING)
            .set_condition_true(ConditionType.ROUTING_READY, "routing")
            .set_condition_true(ConditionType.STARTED, "started")
        )
        assert status.get_last_true().message == "routing"


class TestSyncConditions:
    """Merging observations into persisted conditions."""

    def test_unchanged_condition_keeps_timestamp(self) -> None:
        persisted = [make_condition(ConditionType.STARTED, message="starting", at=EARLIER)]
        status = StatusBuilder(phase=Phase.STARTING).set_condition_true(
            ConditionType.STARTED, "starting"
        )

        merged = sync_conditions(persisted, status, NOW)

        assert merged[0].last_transition_time == EARLIER

    def test_changed_condition_is_restamped(self) -> None:
        persisted = [make_condition(ConditionType.READY, status="False", at=EARLIER)]
        status = StatusBuilder(phase=Phase.RUNNING).set_condition_true(ConditionType.READY)

        merged = sync_conditions(persisted, status, NOW)

        assert merged[0].is_true()
        assert merged[0].last_transition_time == NOW

    def test_unobserved_condition_becomes_unknown(self) -> None:
        persisted = [make_condition(ConditionType.ROUTING_READY, message="ready", at=EARLIER)]

        merged = sync_conditions(persisted, StatusBuilder(phase=Phase.STARTING), NOW)

        assert merged[0].status == "Unknown"
        assert merged[0].message == ""
        assert merged[0].last_transition_time == NOW

    def test_unknown_condition_not_restamped(self) -> None:
        persisted = [make_condition(ConditionType.ROUTING_READY, status="Unknown", at=EARLIER)]

        merged = sync_conditions(persisted, StatusBuilder(phase=Phase.STARTING), NOW)

        assert merged[0].last_transition_time == EARLIER

    def test_warnings_keyed_by_message(self) -> None:
        persisted = [
            make_condition(ConditionType.WARNING, message="old", at=EARLIER),
            make_condition(ConditionType.WARNING, message="kept", at=EARLIER),
        ]
        status = StatusBuilder(phase=Phase.RUNNING).add_warning("kept").add_warning("new")

        merged = sync_conditions(persisted, status, NOW)

        warnings = {c.message: c.last_transition_time for c in merged if c.is_warning()}
        assert warnings == {"kept": EARLIER, "new": NOW}

    def test_result_is_sorted(self) -> None:
        status = (
            StatusBuilder(phase=Phase.RUNNING)
            .set_condition_true(ConditionType.READY)
            .set_condition_true(ConditionType.STARTED)
            .add_warning("w")
        )

        merged = sync_conditions([], status, NOW)

        assert [c.type for c in merged] == [
            ConditionType.WARNING,
            ConditionType.STARTED,
            ConditionType.READY,
        ]


class TestSummaryMessage:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (
                StatusBuilder(phase=Phase.FAILING)
                .set_condition_true(ConditionType.FAILED_START, "failed")
                .set_condition_true(ConditionType.ERROR, "error"),
                "error",
            ),
            (StatusBuilder(phase=Phase.RUNNING), MAIN_URL),
            (StatusBuilder(phase=Phase.STOPPED), "Stopped"),
            (
                StatusBuilder(phase=Phase.STARTING)
                .set_condition_true(ConditionType.STARTED, "starting")
                .set_condition_false(ConditionType.STORAGE_READY, "Waiting for PVC"),
                "Waiting for PVC",
            ),
            (
                StatusBuilder(phase=Phase.STARTING).set_condition_true(
                    ConditionType.DEVFILE_RESOLVED, "Resolved DevWorkspace"
                ),
                "Resolved DevWorkspace",
            ),
            (StatusBuilder(phase=Phase.STARTING), ""),
        ],
    )
    def test_priority(self, status: StatusBuilder, expected: str) -> None:
        assert summary_message(status, MAIN_URL) == expected

    def test_warning_suffix(self) -> None:
        status = StatusBuilder(phase=Phase.RUNNING).add_warning("a").add_warning("b")
        assert summary_message(status, MAIN_URL) == f"{MAIN_URL} [2 warnings]"

    def test_warning_suffix_alone(self) -> None:
        status = StatusBuilder(phase=Phase.STARTING).add_warning("a")
        assert summary_message(status, "") == "[1 warning]"


class TestStartupSeconds:
    def test_started_to_ready(self) -> None:
        workspace = make_workspace(
            conditions=[
                make_condition(ConditionType.STARTED, at=EARLIER),
                make_condition(ConditionType.READY, at=NOW),
            ]
        )
        assert startup_seconds(workspace) == 180.0

    def test_missing_condition(self) -> None:
        assert startup_seconds(make_workspace()) is None


class TestStatusSynchronizer:
    @pytest.fixture
    def cluster(self) -> AsyncMock:
        cluster = AsyncMock(spec=ClusterClient)
        cluster.update_status = AsyncMock(side_effect=lambda ws: ws)
        return cluster

    @pytest.fixture
    def metrics(self) -> MagicMock:
        return MagicMock(spec=MetricsSink)

    @pytest.fixture
    def synchronizer(self, cluster, metrics, clock) -> StatusSynchronizer:
        return StatusSynchronizer(cluster, metrics, clock)

    async def test_no_write_when_unchanged(self, synchronizer, cluster) -> None:
        """Identical observations make no API call."""
        workspace = make_workspace(
            phase=Phase.STARTING,
            conditions=[make_condition(ConditionType.STARTED, message="starting")],
        )
        workspace.status.message = "starting"
        status = StatusBuilder(phase=Phase.STARTING).set_condition_true(
            ConditionType.STARTED, "starting"
        )

        stored = await synchronizer.write(workspace, status)

        assert stored is workspace
        cluster.update_status.assert_not_called()

    async def test_write_sets_main_url(self, synchronizer, cluster) -> None:
        workspace = make_workspace(phase=Phase.STARTING)
        status = StatusBuilder(phase=Phase.STARTING).with_main_url(MAIN_URL)

        stored = await synchronizer.write(workspace, status)

        assert stored.status.main_url == MAIN_URL
        cluster.update_status.assert_awaited_once()

    async def test_running_transition_records_metric(self, synchronizer, metrics) -> None:
        workspace = make_workspace(
            phase=Phase.STARTING,
            conditions=[make_condition(ConditionType.STARTED, at=EARLIER)],
        )
        status = (
            StatusBuilder(phase=Phase.RUNNING)
            .set_condition_true(ConditionType.STARTED)
            .set_condition_true(ConditionType.READY)
        )

        await synchronizer.write(workspace, status)

        metrics.running.assert_called_once()
        assert metrics.running.call_args.args[1] == 180.0

    async def test_failure_metric_only_on_entering_failure(self, synchronizer, metrics) -> None:
        status = StatusBuilder(phase=Phase.STARTING).fail("boom", FailureReason.BAD_REQUEST)

        await synchronizer.write(make_workspace(phase=Phase.STARTING), status)
        await synchronizer.write(make_workspace(phase=Phase.FAILING), status.with_phase(Phase.FAILED))

        metrics.failed.assert_called_once()
        assert metrics.failed.call_args.args[1] == FailureReason.BAD_REQUEST
