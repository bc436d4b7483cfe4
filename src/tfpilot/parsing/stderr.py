"""Interpretation of stderr lines for the text-mode commands (validate, plan)."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from ..render import DiagnosticSink
from ..schema import RunMetadata
from .error_blocks import ErrorBlockCollector, setup_error_handling
from .stateful_parser import NONE_STATE, ParseEvent, StatefulParser, log_unhandled_line

LOGGER = logging.getLogger(__name__)

_SSO_EXPIRED_RE = re.compile(r"Error when retrieving token from sso: Token has expired and refresh failed")
_SSO_LOGIN_RE = re.compile(r"error when retrieving credentials from custom process\. please login using '([^']+)'")
_CACHE_DIR_RE = re.compile(r"(\.terragrunt-cache/[^/]+/[^/]+/)")


def _shorten_path(value: str, cwd: str) -> str:
    value = value.replace(f"{cwd}/", "").replace(cwd, "")
    match = _CACHE_DIR_RE.search(value)
    if match:
        value = value.replace(match.group(1), "<cache>/")
    return value


def format_wrapper_log(payload: Dict[str, Any]) -> str:
    """Render a wrapper JSON log record as ``level: msg [prefix]``."""
    text = f"{payload.get('level', '')}: {payload.get('msg', '')}"
    prefix = payload.get("prefix")
    if prefix:
        text += f" [{prefix}]"
    return text


class StderrLineHandler:
    """Classify stderr lines into the invocation metadata.

    Credential problems set ``needs_auth``; wrapper JSON logs are echoed;
    everything else runs through a private parser carrying the error-block
    grammar so diagnostics printed on stderr are captured as well.
    """

    def __init__(self, meta: RunMetadata, sink: DiagnosticSink, *, operation: Optional[str] = None) -> None:
        self.meta = meta
        self.sink = sink
        self.operation = operation
        self._held: List[str] = []
        self._sso_reported = False
        self._parser = StatefulParser()
        setup_error_handling(self._parser, from_states=[NONE_STATE], lock_info=True)
        self._errors = ErrorBlockCollector(meta)

    def handle(self, raw_line: str) -> None:
        if not raw_line.strip():
            return

        if _SSO_EXPIRED_RE.search(raw_line):
            self.meta.needs_auth = True
            self.sink.log("error: SSO Session expired.", depth=2)
            return

        login = _SSO_LOGIN_RE.search(raw_line)
        if login:
            self.meta.needs_auth = True
            if not self._sso_reported:
                self._sso_reported = True
                self.sink.log("error: SSO Session expired.", depth=2)
                self.sink.log(f"error: Run: {login.group(1)}", depth=2)
            return

        stripped = raw_line.strip()
        if stripped.startswith("{") and stripped.endswith("}"):
            self._handle_json(raw_line)
            return

        self._parser.parse(raw_line.rstrip(), self._on_parse)

    def _on_parse(self, event: ParseEvent) -> None:
        if not self._errors.handle(event):
            log_unhandled_line(event.state, event.line, reason="unexpected state on stderr")

    def _handle_json(self, raw_line: str) -> None:
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError as error:
            self.sink.log(f"error: failed to parse JSON: {error}", depth=2)
            self.sink.log(raw_line.rstrip(), depth=2)
            return
        if not isinstance(payload, dict):
            self.sink.log(raw_line.rstrip(), depth=2)
            return

        cwd = os.getcwd()
        message = _shorten_path(str(payload.get("msg", "")), cwd)
        payload["msg"] = message
        prefix = payload.get("prefix")
        if isinstance(prefix, str):
            payload["prefix"] = _shorten_path(prefix.strip().removeprefix("[").removesuffix("]"), cwd)

        if self.operation != "plan":
            self.sink.log(format_wrapper_log(payload), depth=2)
        elif "terraform invocation failed in" in message:
            self._held.append(format_wrapper_log(payload))
        elif "1 error occurred" in message and "exit status 2\n" in message:
            # exit status 2 only means the plan has changes
            self._held = []
        else:
            self.sink.log(format_wrapper_log(payload), depth=2)

    def flush(self) -> None:
        """Print wrapper messages held back while waiting for a follow-up."""
        for message in self._held:
            self.sink.log(message, depth=2)
        self._held = []


__all__ = ["StderrLineHandler", "format_wrapper_log"]
