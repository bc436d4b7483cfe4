from __future__ import annotations

import logging
from typing import Any, Dict, List

import pytest

from tfpilot.planning import PlanCycleError, PlanSummary
from tfpilot.planning.summary import ChangeItem, find_config, resource_action


def _change(address: str, *actions: str, **extra: Any) -> Dict[str, Any]:
    return {"address": address, "change": {"actions": list(actions), **extra}}


def _resource(address: str, *references: str) -> Dict[str, Any]:
    expressions = {"value": {"references": list(references)}} if references else {"value": {"constant_value": "x"}}
    return {"address": address, "expressions": expressions}


def _plan(changes: List[Dict[str, Any]], resources: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "resource_changes": changes,
        "configuration": {"root_module": {"resources": resources}},
    }
    data.update(extra)
    return data


def _bucket_and_policy() -> Dict[str, Any]:
    return _plan(
        [
            _change("aws_s3_bucket_policy.b", "create"),
            _change("aws_s3_bucket.a", "create"),
        ],
        [
            _resource("aws_s3_bucket.a"),
            _resource("aws_s3_bucket_policy.b", "aws_s3_bucket.a.id", "aws_s3_bucket.a"),
        ],
    )


def test_nested_summary_lists_dependencies_first() -> None:
    summary = PlanSummary.from_data(_bucket_and_policy())

    assert summary.nested_summary() == [
        "[+] aws_s3_bucket.a",
        "[+]   aws_s3_bucket_policy.b - (needs: aws_s3_bucket.a)",
    ]


def test_flat_summary_keeps_plan_order() -> None:
    summary = PlanSummary.from_data(_bucket_and_policy())

    assert summary.flat_summary() == ["[+] aws_s3_bucket_policy.b", "[+] aws_s3_bucket.a"]
    assert summary.summary() == "Plan Summary: 2 to create"


def test_nested_summary_can_be_rendered_repeatedly() -> None:
    summary = PlanSummary.from_data(_bucket_and_policy())

    first = summary.nested_summary()

    assert summary.nested_summary() == first
    assert summary.items[0].dependencies == {"aws_s3_bucket.a"}
    assert summary.items[0].satisfied_dependencies == []


def test_mutual_dependencies_raise_cycle_error() -> None:
    summary = PlanSummary(
        [
            ChangeItem("resource", "create", "aws_a.one", {"aws_b.two"}),
            ChangeItem("resource", "create", "aws_b.two", {"aws_a.one"}),
            ChangeItem("resource", "create", "aws_c.free"),
        ]
    )

    with pytest.raises(PlanCycleError) as excinfo:
        summary.nested_summary()

    assert set(excinfo.value.addresses) == {"aws_a.one", "aws_b.two"}


def test_dependencies_on_unchanged_resources_are_pruned() -> None:
    summary = PlanSummary.from_data(
        _plan(
            [_change("aws_s3_bucket_policy.b", "update")],
            [_resource("aws_s3_bucket_policy.b", "aws_s3_bucket.a", "var.name")],
        )
    )

    assert summary.items[0].dependencies == set()
    assert summary.nested_summary() == ["[~] aws_s3_bucket_policy.b"]


def test_reference_to_counted_resource_expands_to_instances() -> None:
    summary = PlanSummary.from_data(
        _plan(
            [
                _change("aws_instance.web[0]", "create"),
                _change("aws_instance.web[1]", "create"),
                _change("aws_lb_target_group_attachment.web", "create"),
            ],
            [
                _resource("aws_instance.web"),
                _resource("aws_lb_target_group_attachment.web", "aws_instance.web"),
            ],
        )
    )

    attachment = summary.items[2]
    assert attachment.dependencies == {"aws_instance.web[0]", "aws_instance.web[1]"}


def test_module_references_are_prefixed_with_the_module_path() -> None:
    data = {
        "resource_changes": [
            _change("module.app.aws_s3_bucket.logs", "create"),
            _change("module.app.aws_s3_bucket_policy.logs", "create"),
        ],
        "configuration": {
            "root_module": {
                "module_calls": {
                    "app": {
                        "module": {
                            "resources": [
                                _resource("aws_s3_bucket.logs"),
                                _resource("aws_s3_bucket_policy.logs", "aws_s3_bucket.logs.id", "aws_s3_bucket.logs"),
                            ]
                        }
                    }
                }
            }
        },
    }

    summary = PlanSummary.from_data(data)

    assert summary.items[1].dependencies == {"module.app.aws_s3_bucket.logs"}


def test_find_config_keeps_module_instance_key() -> None:
    root = {
        "module_calls": {"app": {"module": {"resources": [{"address": "aws_s3_bucket.logs"}]}}},
    }

    resource, parents = find_config(root, 'module.app["blue"].aws_s3_bucket.logs', [])

    assert resource == {"address": "aws_s3_bucket.logs"}
    assert parents == ['module.app["blue"]']


def test_prior_state_dependencies_are_used() -> None:
    data = _plan(
        [
            _change("aws_security_group.sg", "update"),
            _change("aws_instance.web[0]", "update"),
        ],
        [],
        prior_state={
            "values": {
                "root_module": {
                    "resources": [
                        {"address": "aws_instance.web", "index": 0, "depends_on": ["aws_security_group.sg"]},
                    ]
                }
            }
        },
    )

    summary = PlanSummary.from_data(data)

    assert summary.items[1].dependencies == {"aws_security_group.sg"}


def test_outputs_become_items_with_their_references() -> None:
    data = _bucket_and_policy()
    data["output_changes"] = {
        "bucket_arn": {"actions": ["create"]},
        "unchanged": {"actions": ["no-op"]},
    }
    data["configuration"]["root_module"]["outputs"] = {
        "bucket_arn": {"expression": {"references": ["aws_s3_bucket.a.arn", "aws_s3_bucket.a"]}},
    }

    summary = PlanSummary.from_data(data)

    assert summary.addresses("output") == ["output.bucket_arn"]
    assert summary.items[-1].dependencies == {"aws_s3_bucket.a"}


def test_no_op_changes_are_skipped() -> None:
    summary = PlanSummary.from_data(_plan([_change("aws_s3_bucket.a", "no-op")], []))

    assert summary.items == []
    assert summary.summary() == "Plan Summary: no changes"


@pytest.mark.parametrize(
    ("change", "expected"),
    [
        ({"actions": ["delete", "create"]}, "replace"),
        ({"actions": ["create", "delete"]}, "replace"),
        ({"actions": ["read"]}, "read"),
        ({"actions": ["no-op"], "importing": {"id": "bucket"}}, "import"),
        ({"actions": ["update"], "importing": {"id": "bucket"}}, "import-update"),
        ({"actions": ["no-op"]}, None),
    ],
)
def test_resource_action(change: Dict[str, Any], expected: str | None) -> None:
    assert resource_action(change) == expected


def test_unknown_action_tuple_is_logged_and_skipped(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tfpilot.planning.summary"):
        summary = PlanSummary.from_data(_plan([_change("aws_s3_bucket.a", "forget")], []))

    assert summary.items == []
    assert "Unknown plan actions" in caplog.text


def test_replace_and_import_symbols() -> None:
    summary = PlanSummary(
        [
            ChangeItem("resource", "replace", "aws_instance.a"),
            ChangeItem("resource", "import", "aws_s3_bucket.b"),
            ChangeItem("resource", "import-update", "aws_s3_bucket.c"),
        ]
    )

    assert summary.flat_summary() == ["[±] aws_instance.a", "[i] aws_s3_bucket.b", "[~i] aws_s3_bucket.c"]


def test_from_file_caches_show_output(scripted, tmp_path) -> None:
    plan_file = tmp_path / "app.tfplan"
    plan_file.write_bytes(b"binary plan")
    scripted.show_documents.append(_bucket_and_policy())

    first = PlanSummary.from_file(scripted.terraform, plan_file)
    second = PlanSummary.from_file(scripted.terraform, plan_file)

    assert first.addresses() == second.addresses()
    assert (tmp_path / "app.tfplan.json").exists()
    assert [call[1] for call in scripted.calls] == ["show"]
