from __future__ import annotations

import json
import os
import subprocess
import sys
from collections import defaultdict, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tfpilot.config import TerraformSettings  # noqa: E402
from tfpilot.schema import Diagnostic  # noqa: E402
from tfpilot.tools.stream import EventHandler, StreamEvent  # noqa: E402
from tfpilot.tools.terraform import CapturedOutput, Terraform  # noqa: E402


@dataclass(slots=True)
class Script:
    """Canned output for one terraform invocation."""

    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)
    exit_code: int = 0


@dataclass(slots=True)
class RecordingSink:
    """Diagnostic sink that keeps everything it is asked to show."""

    logs: List[str] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    glyphs: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def log(self, text: str, depth: int = 0) -> None:
        self.logs.append(text)

    def header(self, text: str, depth: int = 0) -> None:
        self.headers.append(text)

    def glyph(self, symbol: str) -> None:
        self.glyphs.append(symbol)

    def end_line(self) -> None:
        pass

    def diagnostic(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)


class ScriptedTerraform:
    """Fake invoker replaying canned output per terraform subcommand.

    When a subcommand has a single script left it is replayed for every
    further call, so loops can be exercised with one registration.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.scripts: Dict[str, Deque[Script]] = defaultdict(deque)
        self.calls: List[List[str]] = []
        self.show_documents: Deque[dict] = deque()
        self.settings = TerraformSettings(working_dir=root, max_retries=5, reconfigure_attempts=3)
        self.terraform = Terraform(self.settings, invoke=self.invoke, capture=self.capture)

    def add(self, subcommand: str, *, stdout: Sequence[str] = (), stderr: Sequence[str] = (), exit_code: int = 0) -> None:
        self.scripts[subcommand].append(Script(list(stdout), list(stderr), exit_code))

    def add_json(self, subcommand: str, events: Sequence[dict], *, exit_code: int = 0) -> None:
        self.add(subcommand, stdout=[json.dumps(event) + "\n" for event in events], exit_code=exit_code)

    def subcommands(self) -> List[str]:
        return [call[1] for call in self.calls]

    def invoke(self, args: Sequence[str], on_event: EventHandler) -> int:
        argv = list(args)
        self.calls.append(argv)
        queue = self.scripts.get(argv[1])
        if not queue:
            raise AssertionError(f"no script registered for {argv}")
        script = queue.popleft() if len(queue) > 1 else queue[0]
        on_event(StreamEvent("command", json.dumps(argv)))
        for line in script.stdout:
            on_event(StreamEvent("stdout", line if line.endswith("\n") else line + "\n"))
        for line in script.stderr:
            on_event(StreamEvent("stderr", line if line.endswith("\n") else line + "\n"))
        return script.exit_code

    def capture(self, args: Sequence[str]) -> CapturedOutput:
        self.calls.append(list(args))
        document = self.show_documents.popleft()
        return CapturedOutput(command=tuple(args), exit_code=0, stdout=json.dumps(document), stderr="")


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def scripted(tmp_path: Path) -> ScriptedTerraform:
    return ScriptedTerraform(tmp_path)


def run_cli(cwd: Path, *args: str, stdin: str | None = None) -> subprocess.CompletedProcess[str]:
    """Invoke ``python -m tfpilot.cli`` with the provided arguments."""
    env = os.environ.copy()
    pythonpath = str(SRC)
    if env.get("PYTHONPATH"):
        pythonpath = os.pathsep.join([pythonpath, env["PYTHONPATH"]])
    env["PYTHONPATH"] = pythonpath

    command = [sys.executable, "-m", "tfpilot.cli", *args]
    return subprocess.run(  # noqa: S603 - command constructed from known values
        command,
        cwd=cwd,
        env=env,
        input=stdin,
        capture_output=True,
        text=True,
        check=False,
    )


@pytest.fixture()
def tfpilot_cli():
    return run_cli
