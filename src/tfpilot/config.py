"""Runtime settings for terraform invocations.

Settings are layered: built-in defaults, then the ``terraform`` section of an
optional YAML file, then environment toggles set by the surrounding shell
glue.  CLI flags are applied last by the caller through :meth:`TerraformSettings.override`.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

DEFAULT_CONFIG_NAME = "tfpilot.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Raised when the configuration file cannot be interpreted."""


@dataclass(slots=True)
class TerraformSettings:
    """Everything needed to build and run terraform commands."""

    base_command: str = "terraform"
    auth_wrapper: List[str] = field(default_factory=list)
    json_plan: bool = False
    no_interactive: bool = False
    max_retries: int = 5
    reconfigure_attempts: int = 3
    working_dir: Path = field(default_factory=Path.cwd)
    extra_env: Dict[str, str] = field(default_factory=dict)

    def environment(self) -> Dict[str, str]:
        """Return the child process environment with automation toggles applied."""
        env: Dict[str, str] = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        env.update({str(key): str(value) for key, value in self.extra_env.items()})
        return env

    def prepare_command(self, args: List[str], *, need_auth: bool = True) -> List[str]:
        """Prefix ``args`` with the base command and, when required, the auth wrapper."""
        if self.auth_wrapper and need_auth:
            return [*self.auth_wrapper, self.base_command, *args]
        return [self.base_command, *args]

    def override(self, **changes: Any) -> "TerraformSettings":
        """Return a copy with every non-``None`` value in ``changes`` applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)


def _flag(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in _TRUTHY


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    """Read a YAML mapping from disk, returning an empty mapping when absent."""
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse {config_path}: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration must be a mapping at the top level: {config_path}")
    return dict(data)


def _apply_section(settings: TerraformSettings, section: Mapping[str, Any], base_dir: Path) -> TerraformSettings:
    """Copy recognised keys from the ``terraform`` config section."""
    base_command = section.get("base_command")
    if isinstance(base_command, str) and base_command.strip():
        settings.base_command = base_command.strip()

    wrapper = section.get("auth_wrapper")
    if isinstance(wrapper, str) and wrapper.strip():
        settings.auth_wrapper = shlex.split(wrapper)
    elif isinstance(wrapper, list):
        settings.auth_wrapper = [str(item) for item in wrapper]

    for key in ("json_plan", "no_interactive"):
        if key in section:
            setattr(settings, key, bool(section[key]))

    for key in ("max_retries", "reconfigure_attempts"):
        value = section.get(key)
        if isinstance(value, int) and value >= 0:
            setattr(settings, key, value)

    working_dir = section.get("working_dir")
    if isinstance(working_dir, str) and working_dir.strip():
        candidate = Path(working_dir.strip())
        if not candidate.is_absolute():
            candidate = (base_dir / candidate).resolve()
        settings.working_dir = candidate

    env = section.get("env")
    if isinstance(env, Mapping):
        settings.extra_env.update({str(key): str(value) for key, value in env.items()})
    return settings


def _apply_environment(settings: TerraformSettings, environ: Mapping[str, str]) -> TerraformSettings:
    """Apply the environment toggles understood by the shell glue."""
    base_command = environ.get("TFPILOT_BASE_CMD")
    if base_command:
        settings.base_command = base_command
    wrapper = environ.get("TFPILOT_AUTH_WRAPPER")
    if wrapper:
        settings.auth_wrapper = shlex.split(wrapper)
    if "JSON_PLAN" in environ:
        settings.json_plan = _flag(environ.get("JSON_PLAN"))
    if "NO_CMD" in environ:
        settings.no_interactive = _flag(environ.get("NO_CMD"))
    retries = environ.get("TFPILOT_MAX_RETRIES")
    if retries and retries.strip().isdigit():
        settings.max_retries = int(retries.strip())
    return settings


def load_settings(
    config_path: Path | str | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    working_dir: Path | None = None,
) -> TerraformSettings:
    """Resolve settings from defaults, the YAML file and the environment."""
    cwd = Path(working_dir or Path.cwd()).resolve()
    path = Path(config_path) if config_path else cwd / DEFAULT_CONFIG_NAME
    if not path.is_absolute():
        path = (cwd / path).resolve()

    settings = TerraformSettings(working_dir=cwd)
    data = _load_yaml(path)
    section = data.get("terraform") or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"The 'terraform' section must be a mapping in {path}")
    _apply_section(settings, section, path.parent)
    _apply_environment(settings, os.environ if environ is None else environ)
    return settings


__all__ = ["ConfigError", "DEFAULT_CONFIG_NAME", "TerraformSettings", "load_settings"]
