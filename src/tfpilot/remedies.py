"""Classify the diagnostics of one invocation into remedies."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Literal, Set, Tuple

from .parsing.diagnostics import AUTH_HINTS, LOCK_SUMMARY, RECONFIGURE_HINT
from .schema import Diagnostic, RunMetadata, Severity

LOGGER = logging.getLogger(__name__)

CommandKind = Literal["init", "validate", "plan"]


class Remedy(str, Enum):
    """Symbolic action that can resolve a detected failure class."""

    INIT = "init"
    RECONFIGURE = "reconfigure"
    PLAN = "plan"
    UNLOCK = "unlock"
    AUTH = "auth"
    USER_ERROR = "user_error"
    USER_WARNING = "user_warning"
    UNKNOWN = "unknown"


PROCESSING_ORDER: Tuple[Remedy, ...] = (
    Remedy.INIT,
    Remedy.PLAN,
    Remedy.RECONFIGURE,
    Remedy.UNLOCK,
    Remedy.USER_ERROR,
    Remedy.AUTH,
    Remedy.UNKNOWN,
    Remedy.USER_WARNING,
)

TERMINAL_REMEDIES = frozenset({Remedy.USER_ERROR, Remedy.AUTH})


def ordered(remedies: Iterable[Remedy]) -> List[Remedy]:
    """Return ``remedies`` in processing precedence."""
    present = set(remedies)
    return [remedy for remedy in PROCESSING_ORDER if remedy in present]


@dataclass(slots=True, frozen=True)
class RemedyRule:
    """Map diagnostics whose summary or body matches ``pattern`` to ``remedy``."""

    remedy: Remedy
    pattern: re.Pattern[str]
    commands: frozenset[str]
    in_body: bool = False

    def matches(self, diagnostic: Diagnostic, command: str) -> bool:
        if command not in self.commands:
            return False
        if self.pattern.search(diagnostic.summary):
            return True
        return self.in_body and any(self.pattern.search(line) for line in diagnostic.body)


def _rule(remedy: Remedy, pattern: str, commands: Iterable[str], *, in_body: bool = False) -> RemedyRule:
    return RemedyRule(remedy, re.compile(pattern), frozenset(commands), in_body)


ALL_COMMANDS = ("init", "validate", "plan")

RULES: Tuple[RemedyRule, ...] = (
    _rule(Remedy.UNLOCK, f"^{re.escape(LOCK_SUMMARY)}$", ALL_COMMANDS),
    _rule(Remedy.AUTH, "|".join(re.escape(hint) for hint in AUTH_HINTS), ALL_COMMANDS, in_body=True),
    _rule(Remedy.RECONFIGURE, re.escape(RECONFIGURE_HINT), ALL_COMMANDS, in_body=True),
    _rule(Remedy.INIT, r"there is no package for .+ cached in", ("validate", "plan")),
    _rule(Remedy.INIT, r"Missing required provider", ("validate", "plan")),
    _rule(Remedy.INIT, r"Module not installed", ("validate", "plan")),
    _rule(Remedy.INIT, r"Module source has changed", ("validate", "plan")),
    _rule(Remedy.INIT, r"Required plugins are not installed", ("validate", "plan")),
    _rule(Remedy.INIT, r"Inconsistent dependency lock file", ("validate", "plan")),
    _rule(Remedy.INIT, r"timeout while waiting for plugin to start", ("validate",), in_body=True),
    _rule(Remedy.PLAN, r"timeout while waiting for plugin to start", ("plan",), in_body=True),
    _rule(Remedy.USER_ERROR, r"Missing required argument", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Error in function call", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Invalid value for input variable", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Unsupported block type", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Unsupported argument", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Reference to undeclared", ALL_COMMANDS),
    _rule(Remedy.USER_ERROR, r"Invalid reference", ALL_COMMANDS),
    _rule(
        Remedy.USER_ERROR,
        r"Could not retrieve the list of available versions for provider",
        ALL_COMMANDS,
        in_body=True,
    ),
)


def match_rules(diagnostic: Diagnostic, command: str) -> Set[Remedy]:
    """Remedies of every rule matching ``diagnostic`` for ``command``."""
    return {rule.remedy for rule in RULES if rule.matches(diagnostic, command)}


def classify(meta: RunMetadata, *, command: CommandKind, exit_code: int | None = None) -> Set[Remedy]:
    """Derive the remedy set for one invocation.

    Every rule that matches contributes; an error matched by no rule adds
    ``unknown`` and an unmatched warning adds ``user_warning``.  A failed
    invocation that yields nothing at all is reported as ``unknown``.
    """
    remedies: Set[Remedy] = set()
    succeeded = exit_code == 0 or (command == "plan" and exit_code == 2)
    if command == "init" and succeeded:
        return remedies

    for diagnostic in meta.diagnostics:
        matched = match_rules(diagnostic, command)
        if matched:
            remedies.update(matched)
        elif diagnostic.severity == Severity.ERROR:
            remedies.add(Remedy.UNKNOWN)
        else:
            remedies.add(Remedy.USER_WARNING)

    if meta.has_lock_error:
        remedies.add(Remedy.UNLOCK)
    if meta.needs_auth:
        remedies.add(Remedy.AUTH)
    if meta.needs_reconfigure:
        remedies.add(Remedy.RECONFIGURE)
    remedies = _resolve_overlaps(remedies)

    failed = exit_code is not None and not succeeded
    if failed and not (remedies - {Remedy.USER_WARNING}):
        LOGGER.warning("No remedy known for %s failure (exit %s): %s", command, exit_code, meta.errors)
        remedies.add(Remedy.UNKNOWN)
    return remedies


def _resolve_overlaps(remedies: Set[Remedy]) -> Set[Remedy]:
    # A known cause explains the accompanying generic errors.
    if remedies & {Remedy.UNLOCK, Remedy.AUTH, Remedy.RECONFIGURE}:
        remedies.discard(Remedy.UNKNOWN)
    return remedies


__all__ = [
    "CommandKind",
    "PROCESSING_ORDER",
    "RULES",
    "Remedy",
    "RemedyRule",
    "TERMINAL_REMEDIES",
    "classify",
    "match_rules",
    "ordered",
]
