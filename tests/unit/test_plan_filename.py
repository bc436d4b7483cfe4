from __future__ import annotations

import tempfile
from pathlib import Path

from tfpilot.utils.plan_filename import plan_filename_for


def test_plan_file_lives_in_tmpdir_and_starts_with_folder_name() -> None:
    result = plan_filename_for("/path/to/folder")

    assert str(result).startswith(tempfile.gettempdir())
    assert result.name.startswith("folder-")
    assert result.suffix == ".tfplan"


def test_plan_file_is_stable_per_path() -> None:
    assert plan_filename_for("/path/to/folder") == plan_filename_for("/path/to/folder")
    assert plan_filename_for("/path/to/folder") != plan_filename_for("/other/to/folder")


def test_plan_file_defaults_to_cwd(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    result = plan_filename_for()

    assert result.name.startswith(f"{Path.cwd().name}-")
