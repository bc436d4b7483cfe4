"""Normalise the raw stdout/stderr lines of a JSON-mode invocation into events.

stdout is expected to carry one JSON object per line (``init -json``,
``plan -json``); keys prefixed with ``@`` are unprefixed.  stderr carries
human text and wrapper log lines (``time=… level=… msg=…``); continuation
lines are merged into the preceding event until a blank line.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..tools.stream import StreamEvent

LOGGER = logging.getLogger(__name__)

MALFORMED_JSON_SUMMARY = "Malformed JSON output"
INVOCATION_FAILED_SUMMARY = "Terraform invocation failed"

_WRAPPER_LOG_RE = re.compile(
    r"^time=(?P<timestamp>[^ ]+) level=(?P<level>[^ ]+) msg=(?P<message>.+?)(?: prefix=\[(?P<prefix>.+?)\])?\s*$"
)
_ERRORS_OCCURRED_RE = re.compile(r"^\d+ errors? occurred:?$")
_EXIT_ROOT_RE = re.compile(r"^\s+\* \[(?P<path>.+)\] exit status (?P<status>\d+)$")
_LEVEL_PREFIX_RE = re.compile(r"^\[?(?P<level>[A-Z]+)\]")


@dataclass(slots=True)
class ToolEvent:
    """A single structured event emitted by the wrapped tool."""

    stream: str
    message: str = ""
    level: str = ""
    module: str = ""
    type: str = "unknown"
    timestamp: Optional[str] = None
    prefix: Optional[str] = None
    diagnostic: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    merge_up: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.module, self.type)


EventSink = Callable[[ToolEvent], None]


def _relative_prefix(prefix: str) -> str:
    try:
        return os.path.relpath(prefix, Path.cwd())
    except ValueError:
        return prefix


def parse_stderr_line(raw_line: str) -> Optional[ToolEvent]:
    """Interpret one stderr line; ``None`` marks a blank separator line."""
    line = raw_line.rstrip("\n")
    match = _WRAPPER_LOG_RE.match(line)
    if match:
        event = ToolEvent(
            stream="stderr",
            message=match.group("message"),
            level=match.group("level"),
            module="terragrunt",
            timestamp=match.group("timestamp"),
        )
        if match.group("prefix"):
            event.prefix = _relative_prefix(match.group("prefix"))
        event.merge_up = bool(_ERRORS_OCCURRED_RE.match(event.message))
        return event
    if not line.strip():
        return None
    return ToolEvent(stream="stderr", message=line.rstrip(), merge_up=True)


def parse_stdout_line(raw_line: str) -> ToolEvent:
    """Decode one stdout line, wrapping undecodable JSON into a synthetic diagnostic."""
    stripped = raw_line.strip()
    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as error:
            LOGGER.debug("Malformed JSON line from tool: %s", error)
            return ToolEvent(
                stream="stdout",
                message=MALFORMED_JSON_SUMMARY,
                level="warn",
                module="non-json-log",
                type="diagnostic",
                diagnostic={
                    "severity": "warning",
                    "summary": MALFORMED_JSON_SUMMARY,
                    "detail": f"{error}\n{stripped}",
                },
            )
        if isinstance(payload, dict):
            return _event_from_payload(payload)

    event = ToolEvent(stream="stdout", message=stripped, module="non-json-log")
    level_match = _LEVEL_PREFIX_RE.match(stripped)
    if level_match:
        event.level = level_match.group("level").lower()
    return event


def _event_from_payload(payload: Dict[str, Any]) -> ToolEvent:
    data = {(key[1:] if key.startswith("@") else key): value for key, value in payload.items()}
    diagnostic = data.pop("diagnostic", None)
    event = ToolEvent(
        stream="stdout",
        message=str(data.pop("message", "") or ""),
        level=str(data.pop("level", "") or ""),
        module=str(data.pop("module", "") or ""),
        type=str(data.pop("type", "") or "unknown"),
        timestamp=data.pop("timestamp", None),
        diagnostic=diagnostic if isinstance(diagnostic, dict) else None,
    )
    event.extra = data
    return event


def finalize_event(event: ToolEvent) -> ToolEvent:
    """Apply defaults and detect wrapper invocation-failure summaries."""
    if not event.level:
        event.level = "error" if event.stream == "stderr" else "info"
    if not event.module:
        event.module = event.stream
    if not event.type:
        event.type = "unknown"
    event.message = event.message.lstrip("\n")

    if event.message.startswith("Terraform invocation failed in "):
        roots: List[Dict[str, Any]] = []
        extra: List[str] = []
        for line in event.message.split("\n"):
            root = _EXIT_ROOT_RE.match(line)
            if root:
                roots.append({"path": root.group("path"), "status": int(root.group("status"))})
            elif not _ERRORS_OCCURRED_RE.match(line.strip()):
                extra.append(line)
        event.type = "tf_failed"
        event.diagnostic = {
            "severity": "error",
            "summary": INVOCATION_FAILED_SUMMARY,
            "detail": event.message,
            "roots": roots,
            "extra": extra,
        }
        event.message = INVOCATION_FAILED_SUMMARY
    return event


class JsonLineDecoder:
    """Turn a stream of raw :class:`StreamEvent` lines into :class:`ToolEvent` items."""

    def __init__(self, emit: EventSink, *, on_command: Optional[Callable[[List[str]], None]] = None) -> None:
        self._emit = emit
        self._on_command = on_command
        self._pending: Optional[ToolEvent] = None

    def _flush(self) -> None:
        if self._pending is not None:
            pending, self._pending = self._pending, None
            self._emit(finalize_event(pending))

    def feed(self, event: StreamEvent) -> None:
        if event.stream == "command":
            argv = json.loads(event.line)
            LOGGER.info("Running command: %s", " ".join(argv))
            if self._on_command is not None:
                self._on_command(argv)
            return

        if event.stream == "stdout":
            if not event.line.strip():
                return
            self._flush()
            self._emit(finalize_event(parse_stdout_line(event.line)))
            return

        parsed = parse_stderr_line(event.line)
        if parsed is None:
            self._flush()
        elif parsed.merge_up:
            if self._pending is not None:
                self._pending.message += f"\n{parsed.message}"
            else:
                parsed.merge_up = False
                self._pending = parsed
        else:
            self._flush()
            self._pending = parsed

    def close(self) -> None:
        """Emit whatever stderr event is still being assembled."""
        self._flush()


__all__ = [
    "INVOCATION_FAILED_SUMMARY",
    "JsonLineDecoder",
    "MALFORMED_JSON_SUMMARY",
    "ToolEvent",
    "finalize_event",
    "parse_stderr_line",
    "parse_stdout_line",
]
