"""Process integrations used by the recovery loop."""

from .stream import EventHandler, StreamEvent, StreamName, run_with_each_line
from .terraform import CapturedOutput, Invoker, Terraform, TerraformError

__all__ = [
    "CapturedOutput",
    "EventHandler",
    "Invoker",
    "StreamEvent",
    "StreamName",
    "Terraform",
    "TerraformError",
    "run_with_each_line",
]
