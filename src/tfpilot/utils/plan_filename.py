"""Stable plan file locations per working directory."""

from __future__ import annotations

import hashlib
import tempfile
from pathlib import Path


def plan_filename_for(path: Path | str | None = None) -> Path:
    """Return ``<tmpdir>/<folder>-<md5 of path>.tfplan`` for ``path`` (default: cwd)."""
    resolved = str(path) if path is not None else str(Path.cwd())
    digest = hashlib.md5(resolved.encode("utf-8")).hexdigest()  # noqa: S324 - naming only
    folder_name = Path(resolved).name
    return Path(tempfile.gettempdir()) / f"{folder_name}-{digest}.tfplan"


__all__ = ["plan_filename_for"]
