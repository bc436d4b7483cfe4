"""
Change-set summaries for saved plans.
"""

from importlib import import_module
from typing import Any

__all__ = ["ChangeItem", "PlanCycleError", "PlanSummary", "symbol_for"]


def __getattr__(name: str) -> Any:
    """Lazily import the summary helpers."""
    if name in __all__:
        module = import_module("tfpilot.planning.summary")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
