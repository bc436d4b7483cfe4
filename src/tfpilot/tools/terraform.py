"""Command builders for the terraform subcommands driven by the recovery loop."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Protocol, Sequence

from ..config import TerraformSettings
from .stream import EventHandler, StreamEvent, run_with_each_line

LOGGER = logging.getLogger(__name__)


class TerraformError(RuntimeError):
    """Raised when terraform cannot be launched or returns unusable output."""

    def __init__(self, message: str, *, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class Invoker(Protocol):
    """Process invocation contract: run argv, stream lines, return the exit status."""

    def __call__(self, args: Sequence[str], on_event: EventHandler) -> int: ...


@dataclass(slots=True)
class CapturedOutput:
    """Result of a non-streaming command whose output is consumed whole."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str


Capturer = Callable[[Sequence[str]], CapturedOutput]


def _passthrough(event: StreamEvent) -> None:
    if event.stream == "command":
        LOGGER.info("Running command: %s", " ".join(json.loads(event.line)))
        return
    print(event.line, end="")


@dataclass(slots=True)
class Terraform:
    """Build terraform argv from settings and hand it to an invoker.

    ``invoke`` and ``capture`` default to real subprocess execution in
    ``settings.working_dir``; tests substitute scripted fakes.
    """

    settings: TerraformSettings
    invoke: Invoker | None = None
    capture: Capturer | None = None
    history: List[List[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.invoke is None:
            self.invoke = self._default_invoke
        if self.capture is None:
            self.capture = self._default_capture

    # ------------------------------------------------------------ execution
    def _default_invoke(self, args: Sequence[str], on_event: EventHandler) -> int:
        try:
            return run_with_each_line(
                args,
                on_event,
                cwd=self.settings.working_dir,
                env=self.settings.environment(),
            )
        except OSError as error:
            raise TerraformError(f"Unable to launch {args[0]}: {error}") from error

    def _default_capture(self, args: Sequence[str]) -> CapturedOutput:
        try:
            process = subprocess.run(  # noqa: S603 - argv is assembled from settings
                list(args),
                cwd=self.settings.working_dir,
                env=self.settings.environment(),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            raise TerraformError(f"Unable to launch {args[0]}: {error}") from error
        return CapturedOutput(
            command=tuple(args),
            exit_code=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )

    def _stream(self, args: List[str], on_event: EventHandler, *, need_auth: bool = True) -> int:
        command = self.settings.prepare_command(args, need_auth=need_auth)
        self.history.append(command)
        assert self.invoke is not None
        return self.invoke(command, on_event)

    # ------------------------------------------------------------- commands
    def init(
        self,
        on_event: EventHandler,
        *,
        upgrade: bool = False,
        reconfigure: bool = False,
        json_output: bool = True,
    ) -> int:
        args = ["init", "-input=false"]
        if upgrade:
            args.append("-upgrade")
        if reconfigure:
            args.append("-reconfigure")
        if json_output:
            args.append("-json")
        return self._stream(args, on_event)

    def validate(self, on_event: EventHandler) -> int:
        return self._stream(["validate", "-json"], on_event)

    def plan(
        self,
        on_event: EventHandler,
        *,
        out: Path | str,
        json_output: bool = False,
        targets: Sequence[str] = (),
    ) -> int:
        args = ["plan", "-out", str(out), "-input=false", "-compact-warnings", "-detailed-exitcode"]
        if json_output:
            args.append("-json")
        args.extend(f"-target={target}" for target in targets)
        return self._stream(args, on_event)

    def apply(
        self,
        *,
        filename: Path | str | None = None,
        targets: Sequence[str] = (),
        on_event: EventHandler | None = None,
    ) -> int:
        args = ["apply"]
        args.extend(f"-target={target}" for target in targets)
        if filename is not None:
            args.append(str(filename))
        return self._stream(args, on_event or _passthrough)

    def force_unlock(self, lock_id: str, *, on_event: EventHandler | None = None) -> int:
        return self._stream(["force-unlock", "-force", lock_id], on_event or _passthrough)

    def show_json(self, plan_file: Path | str) -> Dict[str, Any]:
        """Return the decoded ``show -json`` document for ``plan_file``."""
        command = self.settings.prepare_command(["show", "-json", str(plan_file)])
        self.history.append(command)
        assert self.capture is not None
        result = self.capture(command)
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as error:
            message = f"Execution failed with exit code: {result.exit_code}"
            output = (result.stdout or "") + (result.stderr or "")
            if output.strip():
                message = f"{message}\nOutput:\n{output}"
            raise TerraformError(message, exit_code=result.exit_code, output=output) from error
        if not isinstance(payload, dict):
            raise TerraformError("show -json did not return an object", exit_code=result.exit_code)
        return payload


__all__ = ["CapturedOutput", "Invoker", "Terraform", "TerraformError"]
