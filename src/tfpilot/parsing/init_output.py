"""Grammar and event handling for ``terraform init -json``."""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from ..render import DiagnosticSink
from ..schema import RunMetadata
from ..tools.terraform import Terraform
from .diagnostics import AUTH_HINTS, LOCK_SUMMARY, RECONFIGURE_HINT, diagnostic_from_payload, record_diagnostic
from .error_blocks import ErrorBlockCollector, setup_error_handling
from .events import JsonLineDecoder, ToolEvent
from .stateful_parser import NONE_STATE, ParseEvent, StatefulParser, log_unhandled_line, strip_ansi

LOGGER = logging.getLogger(__name__)

MODULES_INIT = "modules_init"
MODULES_UPGRADE = "modules_upgrade"
BACKEND = "backend"
BACKEND_ERROR = "backend_error"
PLUGINS = "plugins"
PLUGIN_WARNINGS = "plugin_warnings"

UI_MODULES = frozenset({"terraform.ui", "tofu.ui"})

_DOWNLOAD_RE = re.compile(r"^Downloading (?P<repo>[^ ]+)(?: (?P<version>[^ ]+))? for (?P<module>[^ ]+)\.\.\.")
_MODULE_IN_RE = re.compile(r"^- (?P<module>[^ ]+) in(?: (?P<path>.+))?$")

_PLUGIN_LINES: Tuple[Tuple[re.Pattern[str], Optional[str]], ...] = (
    (re.compile(r"^- Reusing previous version of (?P<module>.+) from the dependency lock file$"), "- [FROM-LOCK] {module}"),
    (re.compile(r"^- (?P<module>.+) is built in to (?:Terraform|OpenTofu)$"), "- [BUILTIN] {module}"),
    (re.compile(r'^- Finding (?P<module>[^ ]+) versions matching "(?P<version>.+)"\.\.\.'), '- [FIND] {module} matching "{version}"'),
    (re.compile(r"^- Finding latest version of (?P<module>.+)\.\.\.$"), "- [FIND] {module}"),
    (re.compile(r"^- Installing (?P<module>[^ ]+) v(?P<version>.+)\.\.\.$"), "- [INSTALLING] {module} v{version}"),
    (
        re.compile(r"^- Installed (?P<module>[^ ]+) v(?P<version>.+) \(signed(?:, | by)(?: a)? (?P<signed>.+)\)$"),
        "- [INSTALLED] {module} v{version} ({signed})",
    ),
    (re.compile(r"^- Using previously-installed (?P<module>[^ ]+) v(?P<version>.+)$"), "- [USING] {module} v{version}"),
    (
        re.compile(r'^- Downloading plugin for provider "(?P<provider>[^"]+)" \((?P<path>[^)]+)\) (?P<version>.+)\.\.\.$'),
        "- {provider} {version}",
    ),
    (
        re.compile(r"^- Using (?P<provider>[^ ]+) v(?P<version>.+) from the shared cache directory$"),
        "- [CACHE HIT] {provider} {version}",
    ),
    (re.compile(r"^- Checking for available provider plugins\.\.\.$"), None),
)


def setup_init_parser(parser: StatefulParser) -> None:
    """Register the init phase states on ``parser``."""
    parser.define_state(MODULES_INIT, r"^Initializing modules\.\.\.", [NONE_STATE, BACKEND])
    parser.define_state(MODULES_UPGRADE, r"^Upgrading modules\.\.\.")
    parser.define_state(BACKEND, r"^Initializing the backend\.\.\.", [NONE_STATE, MODULES_INIT, MODULES_UPGRADE])
    parser.define_state(PLUGINS, r"^Initializing provider plugins\.\.\.", [BACKEND, MODULES_INIT])

    parser.define_state(BACKEND_ERROR, r"Error when retrieving token from sso", [BACKEND])

    parser.define_state(PLUGIN_WARNINGS, r"^$", [PLUGINS])
    parser.define_state(BACKEND_ERROR, r"Error:", [BACKEND])


class InitOutputHandler:
    """Consume init events: feed UI text to the grammar and record diagnostics."""

    def __init__(self, meta: RunMetadata, sink: DiagnosticSink) -> None:
        self.meta = meta
        self.sink = sink
        self.phase = "init"
        self.parser = StatefulParser()
        setup_init_parser(self.parser)
        setup_error_handling(self.parser, from_states=[PLUGINS, MODULES_INIT])
        self._errors = ErrorBlockCollector(meta)

    # ---------------------------------------------------------------- events
    def handle_event(self, event: ToolEvent) -> None:
        if event.level == "info":
            if event.module in UI_MODULES:
                self._handle_ui_event(event)
            else:
                LOGGER.debug("init event %s/%s: %s", event.module, event.type, event.message)
            return

        if event.diagnostic is not None:
            self._handle_diagnostic_event(event)
        elif event.level == "error":
            if RECONFIGURE_HINT in event.message:
                self.meta.needs_reconfigure = True
            if any(hint in event.message for hint in AUTH_HINTS):
                self.meta.needs_auth = True
            self.sink.log(event.message, depth=2)
        else:
            LOGGER.debug("init %s event %s/%s: %s", event.level, event.module, event.type, event.message)

    def _handle_ui_event(self, event: ToolEvent) -> None:
        if event.type == "version":
            for key in ("terraform", "tofu", "ui"):
                value = event.extra.get(key)
                if value:
                    setattr(self.meta, f"{key}_version", str(value))
            return
        if event.type in ("output", "unknown", "init_output", "log"):
            for line in event.message.rstrip().split("\n"):
                self.parser.parse(line.rstrip(), self.handle_parse_event)
            return
        if self.meta.mark_seen(event.module, event.type):
            LOGGER.debug("Unhandled init event type %s/%s: %s", event.module, event.type, event.message)

    def _handle_diagnostic_event(self, event: ToolEvent) -> None:
        assert event.diagnostic is not None
        if event.module == "terragrunt" and event.type == "tf_failed":
            # the wrapper summary duplicates the diagnostics already reported
            LOGGER.debug("Muted wrapper failure: %s", event.diagnostic.get("roots"))
            return

        handled = event.diagnostic.get("summary") == LOCK_SUMMARY
        diagnostic = diagnostic_from_payload(event.diagnostic, printed=not handled)
        record_diagnostic(self.meta, diagnostic)
        if handled:
            self.sink.log(f"{event.level}: {diagnostic.summary}", depth=2)
        else:
            self.sink.diagnostic(diagnostic)

    # ----------------------------------------------------------------- lines
    def handle_parse_event(self, event: ParseEvent) -> None:
        if self.handle_line(event):
            return
        if not self._errors.handle(event):
            log_unhandled_line(event.state, event.line, reason="unexpected state")

    def handle_line(self, event: ParseEvent) -> bool:
        """Apply the init phase rules to one parsed line; ``False`` if the state is not an init phase."""
        state = event.state
        line = event.line
        stripped = strip_ansi(line).rstrip()

        if state in (MODULES_INIT, MODULES_UPGRADE):
            if self.phase != state:
                self.phase = state
                title = "Initializing modules " if state == MODULES_INIT else "Upgrading modules "
                self.sink.header(title, depth=1)
            elif _DOWNLOAD_RE.match(stripped):
                self.sink.glyph("D")
            elif _MODULE_IN_RE.match(stripped):
                self.sink.glyph(".")
            elif stripped == "":
                self.sink.end_line()
            else:
                log_unhandled_line(state, line, reason=f"unexpected line in {state} state")
        elif state == BACKEND:
            if self.phase != state:
                self.phase = state
                self.sink.log("Initializing the backend ", depth=1)
            elif stripped.startswith("Successfully configured") or "unless the backend" in stripped:
                self.sink.log(stripped, depth=2)
            elif stripped == "":
                self.sink.end_line()
            else:
                log_unhandled_line(state, line, reason="unexpected line in backend state")
        elif state == BACKEND_ERROR:
            if RECONFIGURE_HINT in stripped:
                self.meta.needs_reconfigure = True
                self.sink.log("module needs to be reconfigured", depth=2)
            if any(hint in stripped for hint in AUTH_HINTS):
                self.meta.needs_auth = True
                self.sink.log("authentication problem", depth=2)
        elif state == PLUGINS:
            if self.phase != state:
                self.phase = state
                self.sink.log("Initializing provider plugins ...", depth=1)
            else:
                self._handle_plugin_line(state, line, stripped)
        elif state == PLUGIN_WARNINGS:
            if self.phase != state:
                self.phase = state
            else:
                self.sink.log(stripped, depth=1)
        elif state == NONE_STATE:
            if stripped:
                log_unhandled_line(state, line, reason="unexpected line in none state")
        else:
            return False
        return True

    def _handle_plugin_line(self, state: str, line: str, stripped: str) -> None:
        for pattern, template in _PLUGIN_LINES:
            match = pattern.match(stripped)
            if match is None:
                continue
            if template is not None:
                self.sink.log(template.format(**match.groupdict()), depth=2)
            return
        log_unhandled_line(state, line, reason="unexpected line in plugins state")


def run_init(
    terraform: Terraform,
    sink: DiagnosticSink,
    *,
    upgrade: bool = False,
    reconfigure: bool = False,
) -> Tuple[int, RunMetadata]:
    """Run ``init -json`` and return its exit status with the collected metadata."""
    meta = RunMetadata()
    handler = InitOutputHandler(meta, sink)
    decoder = JsonLineDecoder(handler.handle_event)
    status = terraform.init(decoder.feed, upgrade=upgrade, reconfigure=reconfigure)
    decoder.close()
    sink.end_line()
    return status, meta


__all__ = [
    "BACKEND",
    "BACKEND_ERROR",
    "InitOutputHandler",
    "MODULES_INIT",
    "MODULES_UPGRADE",
    "PLUGINS",
    "PLUGIN_WARNINGS",
    "run_init",
    "setup_init_parser",
]
