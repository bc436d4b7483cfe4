"""Line grammars and event classifiers for terraform output."""

from .diagnostics import diagnostic_from_payload, parse_lock_info, record_diagnostic
from .error_blocks import ErrorBlockCollector, setup_error_handling
from .events import JsonLineDecoder, ToolEvent
from .init_output import InitOutputHandler, run_init, setup_init_parser
from .plan_output import PlanJsonHandler, PlanTextHandler, pretty_plan, setup_plan_parser
from .stateful_parser import NONE_STATE, ParseEvent, StatefulParser
from .stderr import StderrLineHandler
from .validation import load_validation, run_validate

__all__ = [
    "ErrorBlockCollector",
    "InitOutputHandler",
    "JsonLineDecoder",
    "NONE_STATE",
    "ParseEvent",
    "PlanJsonHandler",
    "PlanTextHandler",
    "StatefulParser",
    "StderrLineHandler",
    "ToolEvent",
    "diagnostic_from_payload",
    "load_validation",
    "parse_lock_info",
    "pretty_plan",
    "record_diagnostic",
    "run_init",
    "run_validate",
    "setup_error_handling",
    "setup_init_parser",
    "setup_plan_parser",
]
