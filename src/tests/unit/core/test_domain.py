"""Tests for the DevWorkspace model and condition helpers."""

from devworkspace.core.domain.conditions import (
    CONDITION_ORDER,
    Condition,
    ConditionType,
    condition_priority,
)
from devworkspace.core.domain.workspace import (
    STORAGE_TYPE_ATTRIBUTE,
    DevWorkspaceTemplate,
    FailureReason,
    Workspace,
)
from tests.factories import make_condition, make_workspace


class TestConditionOrder:
    def test_progress_conditions_in_order(self) -> None:
        assert [condition_priority(t) for t in CONDITION_ORDER] == list(range(len(CONDITION_ORDER)))

    def test_non_progress_types_sort_first(self) -> None:
        """FailedStart, Error and warnings come before progress conditions."""
        assert condition_priority(ConditionType.FAILED_START) == -1
        assert condition_priority(ConditionType.WARNING) == -1
        assert condition_priority("SomethingElse") == -1

    def test_sort_key_orders_warnings_by_message(self) -> None:
        conditions = [
            make_condition(ConditionType.READY),
            make_condition(ConditionType.WARNING, message="b"),
            make_condition(ConditionType.STARTED),
            make_condition(ConditionType.WARNING, message="a"),
        ]

        ordered = sorted(conditions, key=Condition.sort_key)

        assert [(c.type, c.message) for c in ordered] == [
            (ConditionType.WARNING, "a"),
            (ConditionType.WARNING, "b"),
            (ConditionType.STARTED, ""),
            (ConditionType.READY, ""),
        ]


class TestCondition:
    def test_same_observation_ignores_time(self) -> None:
        a = make_condition(ConditionType.READY, message="ok", at=None)
        b = make_condition(ConditionType.READY, message="ok")
        assert a.same_observation(b)

    def test_status_change_is_new_observation(self) -> None:
        a = make_condition(ConditionType.READY, status="True")
        b = make_condition(ConditionType.READY, status="False")
        assert not a.same_observation(b)

    def test_serialized_camel_case(self) -> None:
        data = make_condition(ConditionType.READY).model_dump(by_alias=True, mode="json")
        assert "lastTransitionTime" in data


class TestWorkspaceModel:
    def test_parses_resource_body(self) -> None:
        """Camel-case API bodies load, unknown fields are kept."""
        body = {
            "apiVersion": "workspace.devfile.io/v1alpha2",
            "kind": "DevWorkspace",
            "metadata": {
                "name": "ws",
                "namespace": "user-ns",
                "uid": "abc",
                "resourceVersion": "42",
                "managedFields": [{"manager": "kubectl"}],
            },
            "spec": {"started": True, "template": {"components": [{"name": "tools"}]}},
            "status": {"devworkspaceId": "workspaceabc", "phase": "Running"},
        }

        workspace = Workspace.model_validate(body)

        assert workspace.key == ("user-ns", "ws")
        assert workspace.metadata.resource_version == "42"
        assert workspace.status.devworkspace_id == "workspaceabc"
        dumped = workspace.model_dump(by_alias=True, mode="json", exclude_none=True)
        assert dumped["metadata"]["managedFields"] == [{"manager": "kubectl"}]

    def test_deleting(self) -> None:
        assert make_workspace(deleting=True).is_deleting
        assert not make_workspace().is_deleting

    def test_failed_start_condition(self) -> None:
        workspace = make_workspace(
            conditions=[make_condition(ConditionType.FAILED_START, message="boom")]
        )
        assert workspace.failed_start_condition().message == "boom"

    def test_routing_class_default(self) -> None:
        assert make_workspace().routing_class("basic") == "basic"


class TestTemplateStorage:
    def test_default_storage_is_common(self) -> None:
        assert DevWorkspaceTemplate().storage_type() == "per-user"
        assert DevWorkspaceTemplate().uses_common_storage()

    def test_per_workspace_storage(self) -> None:
        template = DevWorkspaceTemplate(attributes={STORAGE_TYPE_ATTRIBUTE: "per-workspace"})
        assert not template.uses_common_storage()


class TestFailureReason:
    def test_parse_unknown_value(self) -> None:
        assert FailureReason.parse("Nonsense") == FailureReason.UNKNOWN
        assert FailureReason.parse(None) == FailureReason.UNKNOWN

    def test_metric_label(self) -> None:
        assert FailureReason.BAD_REQUEST.metric_label == "bad_request"
