from __future__ import annotations

from pathlib import Path

import pytest

from tfpilot.config import ConfigError, TerraformSettings, load_settings


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config_file(tmp_path: Path) -> None:
    settings = load_settings(environ={}, working_dir=tmp_path)

    assert settings.base_command == "terraform"
    assert settings.auth_wrapper == []
    assert settings.json_plan is False
    assert settings.max_retries == 5
    assert settings.working_dir == tmp_path.resolve()


def test_yaml_section_is_applied(tmp_path: Path) -> None:
    config = _write(
        tmp_path / "tfpilot.yaml",
        "terraform:\n"
        "  base_command: tofu\n"
        "  auth_wrapper: aws-vault exec prod --\n"
        "  json_plan: true\n"
        "  max_retries: 2\n"
        "  working_dir: stacks/app\n"
        "  env:\n"
        "    TF_LOG: info\n",
    )

    settings = load_settings(config, environ={}, working_dir=tmp_path)

    assert settings.base_command == "tofu"
    assert settings.auth_wrapper == ["aws-vault", "exec", "prod", "--"]
    assert settings.json_plan is True
    assert settings.max_retries == 2
    assert settings.working_dir == (tmp_path / "stacks" / "app").resolve()
    assert settings.environment()["TF_LOG"] == "info"


def test_environment_overrides_yaml(tmp_path: Path) -> None:
    _write(tmp_path / "tfpilot.yaml", "terraform:\n  json_plan: true\n")

    settings = load_settings(
        environ={"JSON_PLAN": "0", "NO_CMD": "1", "TFPILOT_BASE_CMD": "tofu", "TFPILOT_MAX_RETRIES": "7"},
        working_dir=tmp_path,
    )

    assert settings.json_plan is False
    assert settings.no_interactive is True
    assert settings.base_command == "tofu"
    assert settings.max_retries == 7


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    config = _write(tmp_path / "tfpilot.yaml", "terraform: [unclosed\n")

    with pytest.raises(ConfigError):
        load_settings(config, environ={}, working_dir=tmp_path)


def test_non_mapping_section_raises_config_error(tmp_path: Path) -> None:
    config = _write(tmp_path / "tfpilot.yaml", "terraform:\n  - one\n")

    with pytest.raises(ConfigError):
        load_settings(config, environ={}, working_dir=tmp_path)


def test_prepare_command_wraps_only_when_auth_is_needed() -> None:
    settings = TerraformSettings(auth_wrapper=["aws-vault", "exec", "prod", "--"])

    assert settings.prepare_command(["plan"]) == ["aws-vault", "exec", "prod", "--", "terraform", "plan"]
    assert settings.prepare_command(["fmt"], need_auth=False) == ["terraform", "fmt"]


def test_override_ignores_none() -> None:
    settings = TerraformSettings(json_plan=True)

    assert settings.override(json_plan=None).json_plan is True
    assert settings.override(json_plan=False).json_plan is False
