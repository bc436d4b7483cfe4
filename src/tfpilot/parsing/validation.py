"""Run ``terraform validate -json`` and turn its document into diagnostics."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Tuple

from ..render import DiagnosticSink
from ..schema import Diagnostic, RunMetadata, Severity
from ..tools.stream import StreamEvent
from ..tools.terraform import Terraform
from .diagnostics import body_lines, diagnostic_from_payload, record_diagnostic
from .stderr import StderrLineHandler

LOGGER = logging.getLogger(__name__)

UNPARSEABLE_SUMMARY = "Unable to parse validate output"


def parse_validation_document(raw: str) -> Tuple[Dict[str, Any] | None, str | None]:
    """Decode the validate document, returning ``(document, error)``."""
    if not raw.strip():
        return None, "validate produced no output"
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as error:
        return None, str(error)
    if not isinstance(document, dict):
        return None, "validate output is not a JSON object"
    return document, None


def load_validation(meta: RunMetadata, sink: DiagnosticSink, raw: str) -> Dict[str, Any]:
    """Record every diagnostic in ``raw`` on ``meta``, printing them as they are recorded."""
    document, error = parse_validation_document(raw)
    if document is None:
        LOGGER.warning("Could not decode validate output: %s", error)
        diagnostic = Diagnostic(
            severity=Severity.ERROR,
            summary=UNPARSEABLE_SUMMARY,
            body=body_lines(f"{error}\n{raw}"),
        )
        record_diagnostic(meta, diagnostic)
        return {"valid": False, "error_count": 1, "warning_count": 0, "diagnostics": []}

    payloads: List[Dict[str, Any]] = [item for item in document.get("diagnostics") or [] if isinstance(item, dict)]
    error_count = int(document.get("error_count") or 0)
    warning_count = int(document.get("warning_count") or 0)
    if error_count or warning_count:
        sink.log(f"Encountered {error_count} Errors and {warning_count} Warnings!", depth=2)

    for payload in payloads:
        diagnostic = diagnostic_from_payload(payload, printed=True)
        sink.diagnostic(diagnostic)
        record_diagnostic(meta, diagnostic)
    return document


def run_validate(terraform: Terraform, sink: DiagnosticSink) -> Tuple[int, RunMetadata]:
    """Validate the working directory and return the exit status with its metadata."""
    meta = RunMetadata()
    stdout: List[str] = []
    stderr_handler = StderrLineHandler(meta, sink, operation="validate")

    def on_event(event: StreamEvent) -> None:
        if event.stream == "stdout":
            stdout.append(event.line)
        elif event.stream == "stderr":
            stderr_handler.handle(event.line)

    sink.log("Validating module ...", depth=1)
    status = terraform.validate(on_event)
    stderr_handler.flush()
    load_validation(meta, sink, "".join(stdout))
    return status, meta


__all__ = ["UNPARSEABLE_SUMMARY", "load_validation", "parse_validation_document", "run_validate"]
