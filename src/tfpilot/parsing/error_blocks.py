"""Shared grammar for the boxed ``╷ … ╵`` diagnostic blocks.

Terraform prints human-readable diagnostics as blocks opened by ``╷`` and
closed by ``╵``, each body line prefixed with ``│``.  The grammar can be
entered from any of the phase-specific states passed to
:func:`setup_error_handling`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Collection, List, Optional

from ..schema import Diagnostic, RunMetadata, Severity
from .diagnostics import record_diagnostic
from .stateful_parser import ParseEvent, StatefulParser, strip_ansi

LOGGER = logging.getLogger(__name__)

ERROR_BLOCK = "error_block"
ERROR_BLOCK_ERROR = "error_block_error"
ERROR_BLOCK_WARNING = "error_block_warning"
ERROR_LOCK_INFO = "error_lock_info"
AFTER_ERROR = "after_error"

ERROR_STATES = frozenset({ERROR_BLOCK, ERROR_BLOCK_ERROR, ERROR_BLOCK_WARNING, ERROR_LOCK_INFO, AFTER_ERROR})

_GUTTER_RE = re.compile(r"^│ ?")
_HEADLINE_RE = re.compile(r"^(Warning|Error): (.+)$")


def setup_error_handling(
    parser: StatefulParser,
    *,
    from_states: Collection[str],
    lock_info: bool = False,
) -> None:
    """Register the error-block states, optionally with the lock-info extension."""
    if lock_info:
        parser.define_state(ERROR_LOCK_INFO, r"Lock Info", [ERROR_BLOCK_ERROR])
        parser.define_state(AFTER_ERROR, r"^╵", [ERROR_LOCK_INFO])
    parser.define_state(ERROR_BLOCK, r"^╷", set(from_states) | {AFTER_ERROR})
    parser.define_state(ERROR_BLOCK_ERROR, r"^│ Error: ", [ERROR_BLOCK])
    parser.define_state(ERROR_BLOCK_WARNING, r"^│ Warning: ", [ERROR_BLOCK])
    parser.define_state(AFTER_ERROR, r"^╵", [ERROR_BLOCK, ERROR_BLOCK_ERROR, ERROR_BLOCK_WARNING])


@dataclass(slots=True)
class _PendingBlock:
    severity: Optional[Severity] = None
    summary: str = ""
    body: List[str] = field(default_factory=list)

    def add(self, clean_line: str) -> None:
        if clean_line == "":
            # Collapse consecutive blank lines and drop leading ones.
            if not self.body or self.body[-1] == "":
                return
        self.body.append(clean_line)

    def build(self) -> Optional[Diagnostic]:
        if self.severity is None:
            return None
        body = list(self.body)
        while body and body[-1] == "":
            body.pop()
        return Diagnostic(severity=self.severity, summary=self.summary, body=tuple(body))


class ErrorBlockCollector:
    """Accumulate the block currently open and record it when it closes."""

    def __init__(self, meta: RunMetadata) -> None:
        self.meta = meta
        self._pending: Optional[_PendingBlock] = None

    @property
    def in_block(self) -> bool:
        return self._pending is not None

    def handle(self, event: ParseEvent) -> bool:
        """Process ``event`` if it belongs to the error grammar; return whether it did."""
        state = event.state
        if state not in ERROR_STATES:
            return False

        if state == ERROR_BLOCK:
            if event.first_in_state or self._pending is None:
                self._pending = _PendingBlock()
            return True

        if state == AFTER_ERROR:
            if strip_ansi(event.line).strip() == "╵":
                self._close()
            elif event.line.strip():
                LOGGER.debug("Unhandled line after error block: %r", strip_ansi(event.line))
            return True

        if self._pending is None:
            self._pending = _PendingBlock()
        clean_line = _GUTTER_RE.sub("", strip_ansi(event.line).rstrip())
        headline = _HEADLINE_RE.match(clean_line)
        if headline and self._pending.severity is None:
            self._pending.severity = Severity(headline.group(1).lower())
            self._pending.summary = headline.group(2)
        else:
            self._pending.add(clean_line)
        return True

    def _close(self) -> Optional[Diagnostic]:
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        diagnostic = pending.build()
        if diagnostic is None:
            LOGGER.debug("Discarding error block without an Error/Warning headline: %r", pending.body)
            return None
        return record_diagnostic(self.meta, diagnostic)


__all__ = [
    "AFTER_ERROR",
    "ERROR_BLOCK",
    "ERROR_BLOCK_ERROR",
    "ERROR_BLOCK_WARNING",
    "ERROR_LOCK_INFO",
    "ERROR_STATES",
    "ErrorBlockCollector",
    "setup_error_handling",
]
