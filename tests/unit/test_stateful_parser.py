from __future__ import annotations

from tfpilot.parsing.stateful_parser import NONE_STATE, ParseEvent, StatefulParser, strip_ansi


def _collect(parser: StatefulParser, lines: list[str]) -> list[ParseEvent]:
    events: list[ParseEvent] = []
    for line in lines:
        parser.parse(line, events.append)
    return events


def test_callback_fires_for_lines_without_transition() -> None:
    parser = StatefulParser()
    parser.define_state("alpha", r"^start$")

    events = _collect(parser, ["noise", "start", "more noise"])

    assert [event.state for event in events] == [NONE_STATE, "alpha", "alpha"]
    assert [event.line for event in events] == ["noise", "start", "more noise"]


def test_first_registered_match_wins() -> None:
    parser = StatefulParser()
    parser.define_state("first", r"Error")
    parser.define_state("second", r"Error:")

    event = parser.parse("Error: boom")

    assert event.state == "first"


def test_allowed_from_restricts_transitions() -> None:
    parser = StatefulParser()
    parser.define_state("plugins", r"^Initializing provider plugins", ["backend"])
    parser.define_state("backend", r"^Initializing the backend", [NONE_STATE])

    assert parser.parse("Initializing provider plugins...").state == NONE_STATE
    assert parser.parse("Initializing the backend...").state == "backend"
    assert parser.parse("Initializing provider plugins...").state == "plugins"
    # backend is only reachable from none
    assert parser.parse("Initializing the backend...").state == "plugins"


def test_first_in_state_tracks_state_changes() -> None:
    parser = StatefulParser()
    parser.define_state("refreshing", r"Refreshing state")

    events = _collect(parser, ["a: Refreshing state... [id=1]", "b: Refreshing state... [id=2]"])

    assert [event.first_in_state for event in events] == [True, False]


def test_ansi_codes_are_ignored_for_matching_but_kept_in_callback() -> None:
    parser = StatefulParser()
    parser.define_state("summary", r"^Plan:")
    styled = "\x1b[1mPlan:\x1b[0m 1 to add"

    event = parser.parse(styled)

    assert event.state == "summary"
    assert event.line == styled


def test_grammars_share_one_state_namespace() -> None:
    parser = StatefulParser()
    parser.define_state("phase", r"^phase$")
    parser.define_state("nested", r"^nested$", ["phase"])
    parser.define_state("phase", r"^back$", ["nested"])

    events = _collect(parser, ["phase", "nested", "back"])

    assert [event.state for event in events] == ["phase", "nested", "phase"]
    assert [event.first_in_state for event in events] == [True, True, True]


def test_strip_ansi_removes_color_and_bold_sequences() -> None:
    assert strip_ansi("\x1b[31m\x1b[1mError:\x1b[0m boom") == "Error: boom"
    assert strip_ansi("plain line") == "plain line"
