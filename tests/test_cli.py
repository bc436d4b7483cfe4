from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from tfpilot.cli import app

PLAN_DOCUMENT = {
    "resource_changes": [
        {"address": "aws_s3_bucket_policy.b", "change": {"actions": ["create"]}},
        {"address": "aws_s3_bucket.a", "change": {"actions": ["create"]}},
    ],
    "configuration": {
        "root_module": {
            "resources": [
                {"address": "aws_s3_bucket.a", "expressions": {}},
                {
                    "address": "aws_s3_bucket_policy.b",
                    "expressions": {"bucket": {"references": ["aws_s3_bucket.a.id", "aws_s3_bucket.a"]}},
                },
            ]
        }
    },
}


def _write_plan(tmp_path: Path) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(PLAN_DOCUMENT), encoding="utf-8")
    return path


def test_plan_summary_from_json_file(tmp_path: Path, tfpilot_cli) -> None:
    plan = _write_plan(tmp_path)

    result = tfpilot_cli(tmp_path, "plan-summary", str(plan))

    assert result.returncode == 0, result.stderr
    assert "Plan Summary: 2 to create" in result.stdout
    assert "[+] aws_s3_bucket_policy.b" in result.stdout


def test_plan_summary_hierarchy_from_stdin(tmp_path: Path, tfpilot_cli) -> None:
    result = tfpilot_cli(tmp_path, "plan-summary", "-", "--hierarchy", stdin=json.dumps(PLAN_DOCUMENT))

    assert result.returncode == 0, result.stderr
    lines = [line.strip() for line in result.stdout.splitlines()]
    first = lines.index("[+] aws_s3_bucket.a")
    second = lines.index("[+]   aws_s3_bucket_policy.b - (needs: aws_s3_bucket.a)")
    assert first < second


def test_plan_summary_rejects_invalid_json(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    result = CliRunner().invoke(app, ["plan-summary", str(bad), "--config", str(tmp_path / "tfpilot.yaml")])

    assert result.exit_code == 1
    assert "Failed to parse plan JSON" in result.output


def test_invalid_config_exits_with_error(tmp_path: Path) -> None:
    config = tmp_path / "tfpilot.yaml"
    config.write_text("terraform: [oops\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["validate", "--config", str(config)])

    assert result.exit_code == 1
    assert "Failed to load config" in result.output


def test_force_unlock_is_refused_without_interaction(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("NO_CMD", "1")

    result = CliRunner().invoke(
        app, ["force-unlock", "abc", "--config", str(tmp_path / "tfpilot.yaml")]
    )

    assert result.exit_code == 1
    assert "disabled in no-interactive mode" in result.output
