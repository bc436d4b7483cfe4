"""Operator-facing output for diagnostics and progress.

Everything here is write-only: nothing rendered is read back by the
classifier or the orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Protocol

import typer

from .schema import Diagnostic, LockInfo, RunMetadata, Severity

CONTEXT_LINES = 3


class DiagnosticSink(Protocol):
    """Presentation boundary used by the grammars and the orchestrator."""

    def log(self, text: str, depth: int = 0) -> None: ...

    def header(self, text: str, depth: int = 0) -> None: ...

    def glyph(self, symbol: str) -> None: ...

    def end_line(self) -> None: ...

    def diagnostic(self, diagnostic: Diagnostic) -> None: ...


class EchoSink:
    """Print through ``typer.echo`` with two spaces of indentation per depth."""

    def __init__(self, *, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir
        self._inline = False

    def _break(self) -> None:
        if self._inline:
            typer.echo("")
            self._inline = False

    def log(self, text: str, depth: int = 0) -> None:
        self._break()
        indent = "  " * depth
        for line in text.split("\n"):
            typer.echo(f"{indent}{line}")

    def header(self, text: str, depth: int = 0) -> None:
        self._break()
        typer.echo(f"{'  ' * depth}{text}", nl=False)
        self._inline = True

    def glyph(self, symbol: str) -> None:
        typer.echo(symbol, nl=False)
        self._inline = True

    def end_line(self) -> None:
        self._break()

    def diagnostic(self, diagnostic: Diagnostic) -> None:
        self._break()
        for line in format_diagnostic(diagnostic, base_dir=self.base_dir):
            typer.echo(line)


def format_source_range(diagnostic: Diagnostic, *, base_dir: Path | None = None) -> List[str]:
    """Render ``on: file line: L:C`` plus surrounding file context when readable."""
    source = diagnostic.source_range
    if source is None:
        return []

    marker = ">"
    single = source.start_line == source.end_line
    if single:
        lines_info = f"{source.start_line}:{source.start_col}"
    else:
        lines_info = f"{source.start_line}:{source.start_col} to {source.end_line}:{source.end_col}"
    output = [f"on: {source.file} line{'' if single else 's'}: {lines_info}"]

    path = Path(source.file)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    try:
        file_lines = path.read_text(encoding="utf-8").split("\n")
    except OSError:
        return output

    first = max(source.start_line - CONTEXT_LINES, 1)
    last = min(source.end_line + CONTEXT_LINES, len(file_lines))
    for number in range(first, last + 1):
        text = file_lines[number - 1]
        if source.start_line <= number <= source.end_line:
            output.append(f"{marker} {number}: {text}")
        else:
            output.append(f"  {number}: {text}")
    return output


def format_diagnostic(diagnostic: Diagnostic, *, base_dir: Path | None = None) -> List[str]:
    label = "Error" if diagnostic.severity == Severity.ERROR else "Warning"
    lines = [f"{label}: {diagnostic.summary}"]
    lines.extend(f"  {line}" for line in diagnostic.body)
    lines.extend(f"  {line}" for line in format_source_range(diagnostic, base_dir=base_dir))
    return lines


def format_lock_info(lock_info: LockInfo) -> List[str]:
    rows = lock_info.rows()
    width = max(len(name) for name, _ in rows)
    return [f"{name.ljust(width)} | {value}" for name, value in rows]


def print_errors_and_warnings(meta: RunMetadata, sink: DiagnosticSink) -> None:
    """Print every diagnostic that was not already shown while streaming."""
    for diagnostic in meta.diagnostics:
        if diagnostic.printed:
            continue
        sink.diagnostic(diagnostic)


__all__ = [
    "DiagnosticSink",
    "EchoSink",
    "format_diagnostic",
    "format_lock_info",
    "format_source_range",
    "print_errors_and_warnings",
]
