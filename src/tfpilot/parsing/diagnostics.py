"""Recording diagnostics into run metadata.

All diagnostics, whichever grammar or JSON event produced them, pass through
:func:`record_diagnostic`.  That is where invocation-level flags derived from
diagnostic text (lock held, reconfigure needed, credentials expired) are set.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional

from ..schema import Diagnostic, LockInfo, RunMetadata, Severity, SourceRange

LOCK_SUMMARY = "Error acquiring the state lock"
RECONFIGURE_HINT = "terraform init -reconfigure"
AUTH_HINTS = (
    "Error when retrieving token from sso",
    "error when retrieving credentials from custom process",
)

_LOCK_FIELD_RE = re.compile(r"^\s*(?P<key>ID|Path|Operation|Who|Version|Created|Info):\s*(?P<value>.*?)\s*$")
_LOCK_FIELDS = {
    "ID": "lock_id",
    "Path": "path",
    "Operation": "operation",
    "Who": "who",
    "Version": "version",
    "Created": "created_at",
}


def parse_lock_info(detail: str | Iterable[str]) -> Optional[LockInfo]:
    """Extract the ``Lock Info:`` key/value block from a lock diagnostic."""
    lines = detail.split("\n") if isinstance(detail, str) else list(detail)
    values: Dict[str, str] = {}
    for line in lines:
        match = _LOCK_FIELD_RE.match(line)
        if match is None:
            continue
        field_name = _LOCK_FIELDS.get(match.group("key"))
        if field_name and match.group("value"):
            values[field_name] = match.group("value")
    if not values:
        return None
    return LockInfo(**values)


def body_lines(detail: str | None) -> tuple[str, ...]:
    """Split diagnostic detail text into body lines, collapsing repeated blanks."""
    if not detail:
        return ()
    lines: list[str] = []
    for line in detail.rstrip("\n").split("\n"):
        line = line.rstrip()
        if not line and (not lines or lines[-1] == ""):
            continue
        lines.append(line)
    while lines and lines[-1] == "":
        lines.pop()
    return tuple(lines)


def diagnostic_from_payload(payload: Dict[str, object], *, printed: bool = False) -> Diagnostic:
    """Build a diagnostic from terraform's JSON ``diagnostic`` object."""
    severity_raw = str(payload.get("severity") or "error").lower()
    severity = Severity.WARNING if severity_raw.startswith("warn") else Severity.ERROR
    range_payload = payload.get("range")
    source_range = SourceRange.from_payload(range_payload) if isinstance(range_payload, dict) else None
    detail = payload.get("detail")
    return Diagnostic(
        severity=severity,
        summary=str(payload.get("summary") or ""),
        body=body_lines(detail if isinstance(detail, str) else None),
        source_range=source_range,
        printed=printed,
    )


def record_diagnostic(meta: RunMetadata, diagnostic: Diagnostic) -> Diagnostic:
    """Append ``diagnostic`` to ``meta`` and update the derived flags."""
    meta.add_diagnostic(diagnostic)
    if diagnostic.summary == LOCK_SUMMARY:
        meta.lock_info = parse_lock_info(diagnostic.body) or LockInfo()
    if diagnostic.mentions(RECONFIGURE_HINT):
        meta.needs_reconfigure = True
    if any(diagnostic.mentions(hint) for hint in AUTH_HINTS):
        meta.needs_auth = True
    return diagnostic


__all__ = [
    "AUTH_HINTS",
    "LOCK_SUMMARY",
    "RECONFIGURE_HINT",
    "body_lines",
    "diagnostic_from_payload",
    "parse_lock_info",
    "record_diagnostic",
]
