"""Change-set summaries built from ``terraform show -json`` plan documents.

Each resource or output with a real action becomes a :class:`ChangeItem`.
Dependencies come from the prior state's recorded ``depends_on`` and from
expression references found in the configuration tree, and are pruned to
addresses that are themselves changing.  :meth:`PlanSummary.nested_summary`
then orders the items so nothing is listed before what it needs.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, Literal, Optional, Sequence, Set, Tuple

from ..utils.resource_tokenizer import split_index

if TYPE_CHECKING:
    from ..tools.terraform import Terraform

LOGGER = logging.getLogger(__name__)

ChangeKind = Literal["resource", "output"]

_ACTIONS: Dict[Tuple[str, ...], str] = {
    ("create",): "create",
    ("update",): "update",
    ("delete",): "delete",
    ("delete", "create"): "replace",
    ("create", "delete"): "replace",
    ("read",): "read",
}

ACTION_SYMBOLS: Dict[str, str] = {
    "create": "+",
    "update": "~",
    "delete": "-",
    "replace": "±",
    "read": ">",
    "import": "i",
    "import-update": "~i",
}

_MODULE_PREFIX_RE = re.compile(r"^(?P<prefix>module\.(?P<name>[^.\[]+)(?:\[[^\]]*\])?)\.")


def symbol_for(action: str) -> str:
    """Return the one or two character marker used for ``action``."""
    return ACTION_SYMBOLS.get(action, action)


class PlanCycleError(RuntimeError):
    """Raised when the remaining change items all wait on one another."""

    def __init__(self, addresses: Sequence[str]) -> None:
        super().__init__(f"Dependency cycle between: {', '.join(addresses)}")
        self.addresses = list(addresses)


@dataclass(slots=True)
class ChangeItem:
    """A resource or output that the plan will act on."""

    kind: ChangeKind
    action: str
    address: str
    dependencies: Set[str] = field(default_factory=set)
    satisfied_dependencies: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"[{symbol_for(self.action)}] {self.address}"


def resource_action(change: Dict[str, Any]) -> Optional[str]:
    """Map a ``change`` object to an action name, or ``None`` for no-ops and unknown tuples."""
    actions = tuple(change.get("actions") or ())
    importing = bool(change.get("importing"))
    if actions == ("no-op",):
        return "import" if importing else None
    if actions == ("update",) and importing:
        return "import-update"
    action = _ACTIONS.get(actions)
    if action is None:
        LOGGER.warning("Unknown plan actions %s; update the change mapping to support them", list(actions))
    return action


# --------------------------------------------------------------------- deps
def _walk_state_resources(module: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    yield from module.get("resources") or []
    for child in module.get("child_modules") or []:
        yield from _walk_state_resources(child)


def _state_dependencies(data: Dict[str, Any], address: str) -> List[str]:
    root = ((data.get("prior_state") or {}).get("values") or {}).get("root_module")
    if not isinstance(root, dict):
        return []
    base, index = split_index(address)
    for resource in _walk_state_resources(root):
        candidate = resource.get("address")
        if candidate == address or (candidate == base and resource.get("index") == index):
            return list(resource.get("depends_on") or [])
    return []


def _collect_references(expressions: Any, into: List[str]) -> None:
    if isinstance(expressions, list):
        for item in expressions:
            _collect_references(item, into)
    elif isinstance(expressions, dict):
        references = expressions.get("references")
        if isinstance(references, list):
            into.extend(str(reference) for reference in references)
            return
        for value in expressions.values():
            _collect_references(value, into)


def find_config(module: Dict[str, Any] | None, address: str, parents: List[str]) -> Tuple[Dict[str, Any] | None, List[str]]:
    """Resolve ``address`` inside the configuration tree rooted at ``module``.

    ``module.<name>.`` prefixes descend into ``module_calls[name].module``;
    the returned parent path keeps any instance key from the address.
    """
    if not isinstance(module, dict):
        return None, parents
    match = _MODULE_PREFIX_RE.match(address)
    if match:
        call = (module.get("module_calls") or {}).get(match.group("name")) or {}
        return find_config(call.get("module"), address[match.end() :], parents + [match.group("prefix")])
    base, _ = split_index(address)
    for resource in module.get("resources") or []:
        if resource.get("address") == base:
            return resource, parents
    return None, parents


def find_dependencies(data: Dict[str, Any], address: str) -> Set[str]:
    """Collect every address ``address`` depends on, before pruning."""
    dependencies = set(_state_dependencies(data, address))
    root = (data.get("configuration") or {}).get("root_module")
    resource, parents = find_config(root, address, [])
    if resource is not None:
        references: List[str] = []
        _collect_references(resource.get("expressions") or {}, references)
        references.extend(str(item) for item in resource.get("depends_on") or [])
        dependencies.update(".".join(parents + [reference]) for reference in references)
    return dependencies


def _output_dependencies(data: Dict[str, Any], name: str) -> Set[str]:
    root = (data.get("configuration") or {}).get("root_module") or {}
    output = (root.get("outputs") or {}).get(name) or {}
    references: List[str] = []
    _collect_references(output.get("expression") or {}, references)
    return set(references)


def prune_unchanged_dependencies(items: Sequence[ChangeItem]) -> None:
    """Keep only dependencies that name another item in ``items``.

    A dependency on a multi-instance resource (``aws_instance.web``) expands
    to every changing instance (``aws_instance.web[0]``, ...).
    """
    addresses = [item.address for item in items]
    known = set(addresses)
    for item in items:
        pruned: Set[str] = set()
        for dependency in item.dependencies:
            if dependency in known:
                pruned.add(dependency)
            else:
                prefix = f"{dependency}["
                pruned.update(address for address in addresses if address.startswith(prefix))
        pruned.discard(item.address)
        item.dependencies = pruned


# ------------------------------------------------------------------ summary
class PlanSummary:
    """Change items of one plan plus their flat, nested and counted renderings."""

    def __init__(self, items: Sequence[ChangeItem]) -> None:
        self.items: List[ChangeItem] = list(items)

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "PlanSummary":
        items: List[ChangeItem] = []
        for entry in data.get("resource_changes") or []:
            change = entry.get("change")
            if not change:
                continue
            address = entry.get("address", "")
            action = resource_action(change)
            if action is None:
                continue
            items.append(ChangeItem("resource", action, address, find_dependencies(data, address)))

        for name, change in (data.get("output_changes") or {}).items():
            action = resource_action(change or {})
            if action is None:
                continue
            items.append(ChangeItem("output", action, f"output.{name}", _output_dependencies(data, name)))

        prune_unchanged_dependencies(items)
        return cls(items)

    @classmethod
    def from_file(cls, terraform: "Terraform", plan_file: Path | str) -> "PlanSummary":
        return cls.from_data(load_plan_json(terraform, plan_file))

    def addresses(self, kind: Optional[ChangeKind] = None) -> List[str]:
        return [item.address for item in self.items if kind is None or item.kind == kind]

    def summary(self) -> str:
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.action] = counts.get(item.action, 0) + 1
        if not counts:
            return "Plan Summary: no changes"
        return "Plan Summary: " + ", ".join(f"{count} to {action}" for action, count in counts.items())

    def flat_summary(self) -> List[str]:
        return [item.label for item in self.items]

    def nested_order(self) -> List[ChangeItem]:
        """Order items so each follows all of its dependencies.

        Works on index-addressed copies of the dependency sets, so the summary
        can be rendered repeatedly.  Raises :class:`PlanCycleError` once a full
        pass over the pending items emits nothing.
        """
        remaining: Dict[int, Set[str]] = {index: set(item.dependencies) for index, item in enumerate(self.items)}
        satisfied: Dict[int, List[str]] = {index: [] for index in remaining}
        pending: Deque[int] = deque(range(len(self.items)))
        ordered: List[ChangeItem] = []
        stalled = 0

        while pending:
            index = pending.popleft()
            if remaining[index]:
                pending.append(index)
                stalled += 1
                if stalled >= len(pending):
                    raise PlanCycleError([self.items[other].address for other in pending])
                continue

            stalled = 0
            item = self.items[index]
            ordered.append(replace(item, satisfied_dependencies=list(satisfied[index])))
            for other in pending:
                if item.address in remaining[other]:
                    remaining[other].discard(item.address)
                    satisfied[other].append(item.address)
        return ordered

    def nested_summary(self) -> List[str]:
        lines: List[str] = []
        for item in self.nested_order():
            indent = "  " if item.satisfied_dependencies else ""
            line = f"[{symbol_for(item.action)}]{indent} {item.address}"
            if item.satisfied_dependencies:
                line += f" - (needs: {', '.join(item.satisfied_dependencies)})"
            lines.append(line)
        return lines


def load_plan_json(terraform: "Terraform", plan_file: Path | str) -> Dict[str, Any]:
    """Return the ``show -json`` document for ``plan_file``, cached beside it as ``<plan>.json``."""
    plan_path = Path(plan_file)
    cache_path = Path(f"{plan_path}.json")
    if cache_path.exists() and plan_path.exists() and cache_path.stat().st_mtime >= plan_path.stat().st_mtime:
        try:
            cached = json.loads(cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LOGGER.warning("Ignoring unreadable plan cache %s: %s", cache_path, error)
        else:
            if isinstance(cached, dict):
                return cached

    LOGGER.info("Analyzing changes in %s", plan_path)
    data = terraform.show_json(plan_path)
    try:
        cache_path.write_text(json.dumps(data), encoding="utf-8")
    except OSError as error:
        LOGGER.warning("Unable to write plan cache %s: %s", cache_path, error)
    return data


__all__ = [
    "ACTION_SYMBOLS",
    "ChangeItem",
    "PlanCycleError",
    "PlanSummary",
    "find_config",
    "find_dependencies",
    "load_plan_json",
    "prune_unchanged_dependencies",
    "resource_action",
    "symbol_for",
]
