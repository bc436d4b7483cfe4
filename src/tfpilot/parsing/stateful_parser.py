"""Priority-ordered line state machine.

A parser holds a current state and an ordered list of state definitions.  For
every line the definitions allowed from the current state are tried in
registration order and the first whose trigger matches wins; otherwise the
state is left unchanged.  The callback fires for every line either way.

Several grammars can be registered into one parser, so a shared sub-grammar
(for example the error-block grammar) can be entered from many phase-specific
states.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Collection, List, Optional

import click

LOGGER = logging.getLogger(__name__)

NONE_STATE = "none"


@dataclass(slots=True, frozen=True)
class StateDefinition:
    """A named state, its trigger pattern, and the states it may be entered from."""

    state: str
    trigger: re.Pattern[str]
    allowed_from: Optional[frozenset[str]] = None

    def allows(self, current: str) -> bool:
        return self.allowed_from is None or current in self.allowed_from


@dataclass(slots=True, frozen=True)
class ParseEvent:
    """Result of feeding one line: the resolved state and the untouched line."""

    state: str
    line: str
    first_in_state: bool


ParseCallback = Callable[[ParseEvent], None]


def strip_ansi(line: str) -> str:
    """Default normaliser: remove terminal styling escapes."""
    return click.unstyle(line)


def log_unhandled_line(state: str, line: str, *, reason: str) -> None:
    """Record a line the active grammar did not expect; parsing continues."""
    LOGGER.debug("[%s] %s: %r", state, reason, strip_ansi(line).rstrip())


class StatefulParser:
    """Line-oriented transition engine shared by the init, plan and error grammars."""

    def __init__(self, *, normalizer: Callable[[str], str] = strip_ansi) -> None:
        self._normalizer = normalizer
        self._definitions: List[StateDefinition] = []
        self.current = NONE_STATE
        self._last_emitted: str | None = None

    def define_state(
        self,
        state: str,
        trigger: str | re.Pattern[str],
        allowed_from: Collection[str] | None = None,
    ) -> StateDefinition:
        """Register a state definition.  ``allowed_from=None`` means "from any state"."""
        pattern = re.compile(trigger) if isinstance(trigger, str) else trigger
        definition = StateDefinition(
            state=state,
            trigger=pattern,
            allowed_from=frozenset(allowed_from) if allowed_from is not None else None,
        )
        self._definitions.append(definition)
        return definition

    @property
    def definitions(self) -> tuple[StateDefinition, ...]:
        return tuple(self._definitions)

    def _resolve(self, normalized: str) -> str:
        for definition in self._definitions:
            if not definition.allows(self.current):
                continue
            if definition.trigger.search(normalized):
                return definition.state
        return self.current

    def parse(self, line: str, callback: ParseCallback | None = None) -> ParseEvent:
        """Feed one line, update the current state, and notify ``callback``."""
        self.current = self._resolve(self._normalizer(line))
        event = ParseEvent(
            state=self.current,
            line=line,
            first_in_state=self._last_emitted != self.current,
        )
        self._last_emitted = self.current
        if callback is not None:
            callback(event)
        return event


__all__ = [
    "NONE_STATE",
    "ParseCallback",
    "ParseEvent",
    "StateDefinition",
    "StatefulParser",
    "log_unhandled_line",
    "strip_ansi",
]
