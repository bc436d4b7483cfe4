"""CLI commands driving terraform through the tfpilot recovery loop."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, TerraformSettings, load_settings
from .orchestrator import CycleResult, RemedyFailure, RemedyOrchestrator, RemedyResult
from .planning.summary import PlanCycleError, PlanSummary
from .remedies import Remedy
from .render import EchoSink
from .schema import LockInfo, PlanStatus
from .tools.terraform import Terraform, TerraformError

APP_HELP = "Drive terraform through validate/init/plan cycles and resolve recoverable failures."

EXIT_CODES: Dict[PlanStatus, int] = {
    PlanStatus.OK: 0,
    PlanStatus.CHANGES: 2,
    PlanStatus.ERROR: 1,
    PlanStatus.UNKNOWN: 1,
}

app = typer.Typer(help=APP_HELP)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(config: str, *, json_plan: Optional[bool] = None) -> TerraformSettings:
    try:
        settings = load_settings(config)
    except ConfigError as error:
        typer.echo(f"Failed to load config: {error}")
        raise typer.Exit(code=1) from error
    return settings.override(json_plan=json_plan)


def _build(settings: TerraformSettings) -> RemedyOrchestrator:
    sink = EchoSink(base_dir=settings.working_dir)
    return RemedyOrchestrator(Terraform(settings), sink)


def _report_failure(failure: Optional[RemedyFailure]) -> None:
    if failure is None:
        return
    typer.echo("")
    for line in failure.describe():
        typer.echo(line)
    if failure.lock_info is not None:
        typer.echo("Run `tfpilot force-unlock` to release the lock once you are sure it is stale.")


def _finish_remedies(result: RemedyResult) -> None:
    if result.ok:
        typer.echo("Done.")
        return
    _report_failure(result.failure)
    raise typer.Exit(code=1)


def _print_summary(summary: PlanSummary, *, hierarchy: bool) -> None:
    typer.echo(summary.summary())
    lines = summary.nested_summary() if hierarchy else summary.flat_summary()
    for line in lines:
        typer.echo(f"  {line}")


def _finish_cycle(orchestrator: RemedyOrchestrator, result: CycleResult, *, hierarchy: bool) -> None:
    if result.status == PlanStatus.OK:
        typer.echo("no changes")
    elif result.status == PlanStatus.CHANGES and not orchestrator.settings.json_plan:
        typer.echo("Printing Plan Summary ...")
        try:
            _print_summary(orchestrator.summarize_plan(), hierarchy=hierarchy)
        except (TerraformError, PlanCycleError) as error:
            typer.echo(f"Unable to summarise plan: {error}")
            raise typer.Exit(code=1) from error
    elif not result.status.successful:
        _report_failure(result.failure)
    raise typer.Exit(code=EXIT_CODES[result.status])


def _run_guarded(callback: Any) -> Any:
    try:
        return callback()
    except TerraformError as error:
        typer.echo(f"terraform failed: {error}")
        raise typer.Exit(code=1) from error


@app.command()
def run(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    target: List[str] = typer.Option(None, "--target", "-t", help="Resource address to target (repeatable)."),
    json_plan: Optional[bool] = typer.Option(
        None, "--json-plan/--text-plan", help="Parse the structured JSON plan output instead of text."
    ),
    hierarchy: bool = typer.Option(False, "--hierarchy", help="Order the change summary by dependencies."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Validate and plan, resolving init/reconfigure failures automatically."""
    _configure_logging(verbose)
    orchestrator = _build(_load(config, json_plan=json_plan))
    result = _run_guarded(lambda: orchestrator.run_cycle(targets=target or ()))
    _finish_cycle(orchestrator, result, hierarchy=hierarchy)


@app.command()
def plan(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    target: List[str] = typer.Option(None, "--target", "-t", help="Resource address to target (repeatable)."),
    json_plan: Optional[bool] = typer.Option(
        None, "--json-plan/--text-plan", help="Parse the structured JSON plan output instead of text."
    ),
    hierarchy: bool = typer.Option(False, "--hierarchy", help="Order the change summary by dependencies."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Re-run plan without validating first."""
    _configure_logging(verbose)
    orchestrator = _build(_load(config, json_plan=json_plan))
    result = _run_guarded(lambda: orchestrator.run_plan(targets=target or ()))
    _finish_cycle(orchestrator, result, hierarchy=hierarchy)


@app.command()
def validate(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Validate the module and resolve what can be resolved automatically."""
    _configure_logging(verbose)
    orchestrator = _build(_load(config))
    _finish_remedies(_run_guarded(orchestrator.run_validate))


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    upgrade: bool = typer.Option(False, "--upgrade", help="Upgrade modules and providers."),
    reconfigure: bool = typer.Option(False, "--reconfigure", help="Reconfigure the backend."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run terraform init through the init grammar."""
    _configure_logging(verbose)
    orchestrator = _build(_load(config))
    if upgrade:
        _finish_remedies(_run_guarded(orchestrator.run_upgrade))
    elif reconfigure:
        _finish_remedies(_run_guarded(orchestrator.run_reconfigure))
    else:
        _finish_remedies(_run_guarded(lambda: orchestrator.process_remedies({Remedy.INIT})))


@app.command()
def upgrade(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Shortcut for ``init --upgrade``."""
    _configure_logging(verbose)
    _finish_remedies(_run_guarded(_build(_load(config)).run_upgrade))


@app.command()
def reconfigure(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Shortcut for ``init --reconfigure``."""
    _configure_logging(verbose)
    _finish_remedies(_run_guarded(_build(_load(config)).run_reconfigure))


def _read_plan_document(source: str) -> Dict[str, Any]:
    if source == "-":
        raw = sys.stdin.read()
    else:
        path = Path(source)
        if not path.exists():
            raise typer.BadParameter(f"Plan file not found: {path}")
        raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as error:
        typer.echo(f"Failed to parse plan JSON: {error}")
        raise typer.Exit(code=1) from error
    if not isinstance(data, dict):
        typer.echo("Plan JSON must be an object.")
        raise typer.Exit(code=1)
    return data


@app.command("plan-summary")
def plan_summary(
    source: Optional[str] = typer.Argument(
        None,
        help="Plan JSON file, saved plan file, or '-' for stdin (default: the working directory's plan file).",
    ),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    hierarchy: bool = typer.Option(False, "--hierarchy", help="Order the change summary by dependencies."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Print the change summary of a plan."""
    _configure_logging(verbose)
    settings = _load(config)
    terraform = Terraform(settings)
    if source is None:
        summary = _run_guarded(lambda: _build(settings).summarize_plan())
    elif source != "-" and not source.endswith(".json"):
        summary = _run_guarded(lambda: PlanSummary.from_file(terraform, source))
    else:
        summary = PlanSummary.from_data(_read_plan_document(source))
    try:
        _print_summary(summary, hierarchy=hierarchy)
    except PlanCycleError as error:
        typer.echo(f"Unable to order changes: {error}")
        raise typer.Exit(code=1) from error


def _select_addresses(summary: PlanSummary) -> List[str]:
    items = summary.items
    for index, item in enumerate(items, start=1):
        typer.echo(f"{index:>3}. {item.label}")
    answer = typer.prompt("Select changes to apply (comma separated numbers, empty for none)", default="")
    selected: List[str] = []
    for token in answer.replace(" ", "").split(","):
        if not token:
            continue
        if not token.isdigit() or not 1 <= int(token) <= len(items):
            raise typer.BadParameter(f"Invalid selection: {token}")
        selected.append(items[int(token) - 1].address)
    return selected


@app.command()
def apply(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    target: List[str] = typer.Option(None, "--target", "-t", help="Only apply these addresses (repeatable)."),
    select: bool = typer.Option(False, "--select", help="Choose the addresses to apply interactively."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Apply the current plan, or a selected subset of it, then re-plan."""
    _configure_logging(verbose)
    settings = _load(config)
    orchestrator = _build(settings)
    targets = list(target or [])
    if select:
        if settings.no_interactive:
            raise typer.BadParameter("--select cannot be used in no-interactive mode")
        targets = _select_addresses(_run_guarded(orchestrator.summarize_plan))
        if not targets:
            typer.echo("nothing selected")
            raise typer.Exit(code=1)

    if targets:
        status, replanned = _run_guarded(lambda: orchestrator.apply_selected(targets))
    else:
        status, replanned = _run_guarded(orchestrator.apply)
    if status != 0:
        raise typer.Exit(code=1)
    if replanned is not None:
        _finish_cycle(orchestrator, replanned, hierarchy=False)


@app.command("force-unlock")
def force_unlock(
    lock_id: Optional[str] = typer.Argument(
        None, help="Lock id to release (default: detect by planning). A given id needs one confirmation."
    ),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the tfpilot configuration file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Release a stale state lock after confirmation."""
    _configure_logging(verbose)
    settings = _load(config)
    if settings.no_interactive:
        typer.echo("force-unlock needs confirmation and is disabled in no-interactive mode.")
        raise typer.Exit(code=1)
    orchestrator = _build(settings)

    lock_info: Optional[LockInfo] = LockInfo(lock_id=lock_id) if lock_id else None
    if lock_info is None:
        _run_guarded(orchestrator.run_plan)
        lock_info = orchestrator.last_lock_info
    if lock_info is None:
        typer.echo("No state lock detected.")
        raise typer.Exit(code=0)

    released = _run_guarded(
        lambda: orchestrator.force_unlock(
            lock_info, lambda text: typer.confirm(text), operator_supplied=lock_id is not None
        )
    )
    if not released:
        typer.echo("Lock left in place.")
        raise typer.Exit(code=1)
    typer.echo("Lock released.")


if __name__ == "__main__":
    app()
