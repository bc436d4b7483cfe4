"""Grammar and event handling for ``terraform plan``.

Two modes are supported.  The default text mode runs stdout through the plan
grammar below; stderr goes through :class:`StderrLineHandler`.  JSON mode
(``plan -json``) decodes every line into a :class:`ToolEvent` instead.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Sequence, Tuple

from ..planning.summary import symbol_for
from ..render import DiagnosticSink
from ..schema import RunMetadata
from ..tools.stream import StreamEvent
from ..tools.terraform import Terraform
from .diagnostics import AUTH_HINTS, RECONFIGURE_HINT, diagnostic_from_payload, record_diagnostic
from .error_blocks import ErrorBlockCollector, setup_error_handling
from .events import JsonLineDecoder, ToolEvent
from .stateful_parser import NONE_STATE, ParseEvent, StatefulParser, log_unhandled_line, strip_ansi
from .stderr import StderrLineHandler

LOGGER = logging.getLogger(__name__)

INFO = "info"
ERROR = "error"
READING = "reading"
REFRESHING = "refreshing"
OUTPUT_INFO = "output_info"
PLAN_INFO = "plan_info"
PLAN_SUMMARY = "plan_summary"
PLAN_LEGEND = "plan_legend"
PLAN_ERROR = "plan_error"

_READING_RE = re.compile(r"^(?P<address>.+): Reading\.\.\.$")
_READ_COMPLETE_RE = re.compile(r"^(?P<address>.+): Read complete after (?P<elapsed>[^\[]+?)(?: \[(?P<id>.+)\])?$")


def setup_plan_parser(parser: StatefulParser) -> None:
    """Register the text plan states, then the error grammar with lock details."""
    parser.define_state(INFO, r"^Acquiring state lock")
    parser.define_state(ERROR, r"(Error locking state|Error:)", [NONE_STATE, INFO, READING])
    parser.define_state(READING, r": (Reading\.\.\.|Read complete after)", [NONE_STATE, INFO, READING])
    parser.define_state(NONE_STATE, r"^$", [READING])
    parser.define_state(REFRESHING, r"^.+: Refreshing state\.\.\. \[id=", [NONE_STATE, INFO, READING])
    parser.define_state(
        REFRESHING, r"Refreshing Terraform state in-memory prior to plan\.\.\.", [NONE_STATE, INFO, READING]
    )
    parser.define_state(NONE_STATE, r"^----------+$", [REFRESHING])
    parser.define_state(NONE_STATE, r"^$", [REFRESHING])

    parser.define_state(OUTPUT_INFO, r"^Changes to Outputs:$", [NONE_STATE])
    parser.define_state(NONE_STATE, r"^$", [OUTPUT_INFO])

    parser.define_state(PLAN_INFO, r"Terraform will perform the following actions:", [NONE_STATE])
    parser.define_state(PLAN_SUMMARY, r"^Plan:", [PLAN_INFO])

    parser.define_state(PLAN_LEGEND, r"^Terraform used the selected providers to generate the following execution$")
    parser.define_state(NONE_STATE, r"^$", [PLAN_LEGEND])

    parser.define_state(
        PLAN_INFO, r"Terraform planned the following actions, but then encountered a problem:", [NONE_STATE]
    )
    parser.define_state(
        PLAN_ERROR, r"Planning failed\. Terraform encountered an error while generating this plan\.", [REFRESHING]
    )

    setup_error_handling(
        parser,
        from_states=[PLAN_ERROR, NONE_STATE, INFO, READING, PLAN_SUMMARY, REFRESHING],
        lock_info=True,
    )


class PlanTextHandler:
    """Render text plan progress and collect its diagnostics."""

    def __init__(self, meta: RunMetadata, sink: DiagnosticSink) -> None:
        self.meta = meta
        self.sink = sink
        self.parser = StatefulParser()
        setup_plan_parser(self.parser)
        self._errors = ErrorBlockCollector(meta)

    def feed(self, raw_line: str) -> None:
        self.parser.parse(raw_line.rstrip(), self.handle_parse_event)

    def handle_parse_event(self, event: ParseEvent) -> None:
        state = event.state
        line = strip_ansi(event.line)

        if state == NONE_STATE:
            if line.strip():
                log_unhandled_line(state, event.line, reason="unexpected non blank line in none state")
        elif state == READING:
            reading = _READING_RE.match(line)
            complete = _READ_COMPLETE_RE.match(line)
            if reading:
                self.sink.log(f"Reading: {reading.group('address')} ...", depth=2)
            elif complete:
                text = f"Reading Complete: {complete.group('address')} after {complete.group('elapsed')}"
                if complete.group("id"):
                    text += f" [{complete.group('id')}]"
                self.sink.log(text, depth=3)
            else:
                log_unhandled_line(state, event.line, reason="unexpected line in reading state")
        elif state == INFO:
            if "Acquiring state lock. This may take a few moments..." in line:
                self.sink.log("Acquiring state lock ...", depth=2)
            else:
                log_unhandled_line(state, event.line, reason="unexpected line in info state")
        elif state == ERROR:
            self.sink.log(line, depth=2)
        elif state == PLAN_ERROR:
            if "Releasing state lock" in line or "Planning failed." in line:
                self.sink.log(line, depth=2)
            elif line.strip():
                log_unhandled_line(state, event.line, reason="unexpected line in plan_error state")
        elif state == REFRESHING:
            if event.first_in_state:
                self.sink.header("Refreshing state ", depth=2)
            else:
                self.sink.glyph(".")
        elif state in (PLAN_LEGEND, PLAN_INFO, OUTPUT_INFO):
            if event.first_in_state:
                self.sink.end_line()
            self.sink.log(line, depth=2)
        elif state == PLAN_SUMMARY:
            self.sink.log(line, depth=2)
        elif not self._errors.handle(event):
            log_unhandled_line(state, event.line, reason="unexpected state")


class PlanJsonHandler:
    """Classify ``plan -json`` events."""

    def __init__(self, meta: RunMetadata, sink: DiagnosticSink) -> None:
        self.meta = meta
        self.sink = sink
        self._refreshing = False

    def _stop_refreshing(self) -> None:
        if self._refreshing:
            self._refreshing = False
            self.sink.end_line()

    def handle_event(self, event: ToolEvent) -> None:
        if event.type in ("refresh_start", "refresh_complete"):
            if not self._refreshing:
                self._refreshing = True
                self.sink.header("Refreshing state ", depth=2)
            elif event.type == "refresh_complete":
                self.sink.glyph(".")
            return
        self._stop_refreshing()

        if event.diagnostic is not None:
            if event.module == "terragrunt" and event.type == "tf_failed":
                LOGGER.debug("Muted wrapper failure: %s", event.diagnostic.get("roots"))
                return
            record_diagnostic(self.meta, diagnostic_from_payload(event.diagnostic))
            return

        if event.type == "version":
            for key in ("terraform", "tofu", "ui"):
                value = event.extra.get(key)
                if value:
                    setattr(self.meta, f"{key}_version", str(value))
        elif event.type in ("planned_change", "resource_drift"):
            change = event.extra.get("change") or {}
            address = (change.get("resource") or {}).get("addr", "?")
            action = str(change.get("action", ""))
            label = "drift " if event.type == "resource_drift" else ""
            self.sink.log(f"{label}[{symbol_for(action)}] {address}", depth=2)
        elif event.type == "change_summary":
            self.sink.log(event.message, depth=2)
        elif event.type == "outputs":
            outputs = event.extra.get("outputs") or {}
            if outputs:
                self.sink.log(f"Outputs: {', '.join(sorted(outputs))}", depth=2)
        elif event.level == "error":
            if RECONFIGURE_HINT in event.message:
                self.meta.needs_reconfigure = True
            if any(hint in event.message for hint in AUTH_HINTS):
                self.meta.needs_auth = True
            self.sink.log(event.message, depth=2)
        elif event.type == "log" or event.module == "non-json-log":
            LOGGER.debug("plan log: %s", event.message)
        elif self.meta.mark_seen(event.module, event.type):
            LOGGER.info("Unhandled plan event %s/%s: %s", event.module, event.type, event.message)

    def close(self) -> None:
        self._stop_refreshing()


def pretty_plan(
    terraform: Terraform,
    sink: DiagnosticSink,
    filename: Path | str,
    *,
    targets: Sequence[str] = (),
    json_mode: bool = False,
) -> Tuple[int, RunMetadata]:
    """Run ``plan`` into ``filename`` and return its exit status with the collected metadata."""
    meta = RunMetadata()

    if json_mode:
        json_handler = PlanJsonHandler(meta, sink)
        decoder = JsonLineDecoder(json_handler.handle_event)
        status = terraform.plan(decoder.feed, out=filename, json_output=True, targets=targets)
        decoder.close()
        json_handler.close()
        return status, meta

    text_handler = PlanTextHandler(meta, sink)
    stderr_handler = StderrLineHandler(meta, sink, operation="plan")

    def on_event(event: StreamEvent) -> None:
        if event.stream == "stdout":
            text_handler.feed(event.line)
        elif event.stream == "stderr":
            stderr_handler.handle(event.line)
        else:
            LOGGER.info("Running command: %s", event.line)

    status = terraform.plan(on_event, out=filename, targets=targets)
    stderr_handler.flush()
    sink.end_line()
    return status, meta


__all__ = [
    "PlanJsonHandler",
    "PlanTextHandler",
    "pretty_plan",
    "setup_plan_parser",
]
