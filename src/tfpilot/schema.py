"""Typed records produced while interpreting terraform output."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class Severity(str, Enum):
    """Severity of a diagnostic reported by the wrapped tool."""

    ERROR = "error"
    WARNING = "warning"


class PlanStatus(str, Enum):
    """Terminal outcome of a plan cycle."""

    OK = "ok"
    CHANGES = "changes"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def from_exit_code(cls, exit_code: int) -> "PlanStatus":
        """Translate a ``-detailed-exitcode`` exit status into a plan status."""
        if exit_code == 0:
            return cls.OK
        if exit_code == 2:
            return cls.CHANGES
        if exit_code == 1:
            return cls.ERROR
        return cls.UNKNOWN

    @property
    def successful(self) -> bool:
        return self in (PlanStatus.OK, PlanStatus.CHANGES)


class SourceRange(RecordModel):
    """Location of a diagnostic inside the configuration files."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    file: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> Optional["SourceRange"]:
        """Build a range from terraform's ``{"filename", "start", "end"}`` shape."""
        filename = payload.get("filename")
        start = payload.get("start")
        end = payload.get("end")
        if not isinstance(filename, str) or not isinstance(start, dict) or not isinstance(end, dict):
            return None
        try:
            return cls(
                file=filename,
                start_line=int(start.get("line", 0)),
                start_col=int(start.get("column", 0)),
                end_line=int(end.get("line", 0)),
                end_col=int(end.get("column", 0)),
            )
        except (TypeError, ValueError):
            return None


class Diagnostic(RecordModel):
    """Structured error or warning extracted from the wrapped tool's output."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    severity: Severity
    summary: str
    body: Tuple[str, ...] = ()
    source_range: Optional[SourceRange] = None
    printed: bool = False

    @property
    def detail(self) -> str:
        return "\n".join(self.body)

    def mentions(self, needle: str) -> bool:
        """Return ``True`` when the summary or any body line contains ``needle``."""
        if needle in self.summary:
            return True
        return any(needle in line for line in self.body)


class LockInfo(RecordModel):
    """Details of a held state lock, parsed from a lock-acquisition diagnostic."""

    lock_id: str = ""
    path: str = ""
    operation: str = ""
    who: str = ""
    version: str = ""
    created_at: str = ""

    @property
    def is_plan_lock(self) -> bool:
        return self.operation == "OperationTypePlan"

    def rows(self) -> List[Tuple[str, str]]:
        return [
            ("Lock ID", self.lock_id),
            ("Path", self.path),
            ("Operation", self.operation),
            ("Who", self.who),
            ("Version", self.version),
            ("Created", self.created_at),
        ]


class RunMetadata(RecordModel):
    """Accumulator scoped to a single tool invocation.

    Created when an invocation starts and mutated only by the classifier that
    consumes that invocation's event queue.  Diagnostics are appended, never
    edited.  Retry chains fold several instances together with :meth:`merge`.
    """

    diagnostics: List[Diagnostic] = Field(default_factory=list)
    lock_info: Optional[LockInfo] = None
    needs_reconfigure: bool = False
    needs_auth: bool = False
    seen_event_keys: Set[Tuple[str, str]] = Field(default_factory=set)
    terraform_version: Optional[str] = None
    tofu_version: Optional[str] = None
    ui_version: Optional[str] = None

    def add_diagnostic(self, diagnostic: Diagnostic) -> Diagnostic:
        self.diagnostics.append(diagnostic)
        return diagnostic

    @property
    def errors(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if item.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if item.severity == Severity.WARNING]

    @property
    def has_lock_error(self) -> bool:
        return self.lock_info is not None

    def mark_seen(self, module: str, event_type: str) -> bool:
        """Record an event key, returning ``True`` the first time it is seen."""
        key = (module, event_type)
        if key in self.seen_event_keys:
            return False
        self.seen_event_keys.add(key)
        return True

    def merge(self, other: "RunMetadata") -> "RunMetadata":
        """Fold ``other`` into this record and return ``self``."""
        self.diagnostics.extend(other.diagnostics)
        if other.lock_info is not None:
            self.lock_info = other.lock_info
        self.needs_reconfigure = self.needs_reconfigure or other.needs_reconfigure
        self.needs_auth = self.needs_auth or other.needs_auth
        self.seen_event_keys |= other.seen_event_keys
        self.terraform_version = other.terraform_version or self.terraform_version
        self.tofu_version = other.tofu_version or self.tofu_version
        self.ui_version = other.ui_version or self.ui_version
        return self


__all__ = [
    "Diagnostic",
    "LockInfo",
    "PlanStatus",
    "RecordModel",
    "RunMetadata",
    "Severity",
    "SourceRange",
]
