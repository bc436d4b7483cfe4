"""Recovery loop driving terraform through validate, init and plan.

Every invocation is parsed into a fresh :class:`RunMetadata`, classified into
remedies, and the remedies are processed with a bounded recursive retry.
Failures are returned as :class:`RemedyFailure` values; nothing here raises to
abort a retry chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from .parsing.init_output import run_init
from .parsing.plan_output import pretty_plan
from .parsing.validation import run_validate
from .planning.summary import PlanSummary
from .remedies import TERMINAL_REMEDIES, Remedy, classify, ordered
from .render import DiagnosticSink, format_diagnostic, format_lock_info, print_errors_and_warnings
from .schema import Diagnostic, LockInfo, PlanStatus, RunMetadata
from .tools.terraform import Terraform
from .utils.plan_filename import plan_filename_for

LOGGER = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


@dataclass(slots=True)
class RemedyFailure:
    """Why a retry chain stopped, and what was left unresolved."""

    reason: str
    remedies: FrozenSet[Remedy]
    retry_count: int
    diagnostics: List[Diagnostic] = field(default_factory=list)
    lock_info: Optional[LockInfo] = None

    def describe(self) -> List[str]:
        lines = [self.reason, f"unresolved remedies: {[remedy.value for remedy in ordered(self.remedies)]}"]
        for diagnostic in self.diagnostics:
            lines.extend(format_diagnostic(diagnostic))
        if self.lock_info is not None:
            lines.extend(format_lock_info(self.lock_info))
        return lines


@dataclass(slots=True)
class CycleResult:
    """Terminal outcome of a plan cycle."""

    status: PlanStatus
    meta: RunMetadata
    failure: Optional[RemedyFailure] = None


@dataclass(slots=True)
class RemedyResult:
    """Outcome of :meth:`RemedyOrchestrator.process_remedies`."""

    failure: Optional[RemedyFailure] = None
    plan: Optional[CycleResult] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class RemedyOrchestrator:
    """Run terraform commands and resolve the recoverable failures they report."""

    def __init__(
        self,
        terraform: Terraform,
        sink: DiagnosticSink,
        *,
        plan_file: Path | str | None = None,
    ) -> None:
        self.terraform = terraform
        self.sink = sink
        self.settings = terraform.settings
        self.plan_file = Path(plan_file) if plan_file else plan_filename_for(self.settings.working_dir)
        self.chain = RunMetadata()
        self.targets: Tuple[str, ...] = ()
        self.last_lock_info: Optional[LockInfo] = None

    # ------------------------------------------------------------ invocations
    def _collect(self, meta: RunMetadata) -> RunMetadata:
        print_errors_and_warnings(meta, self.sink)
        self.chain.merge(meta)
        if meta.lock_info is not None:
            self.last_lock_info = meta.lock_info
        return meta

    def run_init(self, *, upgrade: bool = False, reconfigure: bool = False) -> Tuple[int, RunMetadata]:
        status, meta = run_init(self.terraform, self.sink, upgrade=upgrade, reconfigure=reconfigure)
        return status, self._collect(meta)

    def validate(self) -> Tuple[int, RunMetadata]:
        status, meta = run_validate(self.terraform, self.sink)
        return status, self._collect(meta)

    def create_plan(self, *, targets: Sequence[str] = ()) -> Tuple[PlanStatus, int, RunMetadata]:
        self.sink.log("Preparing Plan ...", depth=1)
        exit_code, meta = pretty_plan(
            self.terraform,
            self.sink,
            self.plan_file,
            targets=targets,
            json_mode=self.settings.json_plan,
        )
        status = PlanStatus.from_exit_code(exit_code)
        if status == PlanStatus.UNKNOWN:
            self.sink.log(f"terraform plan exited with an unknown exit code: {exit_code}", depth=1)
        return status, exit_code, self._collect(meta)

    # --------------------------------------------------------------- failures
    def _fail(
        self,
        reason: str,
        remedies: Iterable[Remedy],
        retry_count: int,
        meta: Optional[RunMetadata] = None,
    ) -> RemedyResult:
        remaining = frozenset(remedies)
        LOGGER.warning("%s; unresolved remedies: %s", reason, [remedy.value for remedy in ordered(remaining)])
        self.sink.log(f"{reason}; unresolved remedies: {[remedy.value for remedy in ordered(remaining)]}", depth=1)
        failure = RemedyFailure(
            reason=reason,
            remedies=remaining,
            retry_count=retry_count,
            diagnostics=list(meta.errors) if meta is not None else [],
            lock_info=meta.lock_info if meta is not None else None,
        )
        return RemedyResult(failure=failure)

    # ------------------------------------------------------------- retry loop
    def process_remedies(
        self,
        remedies: Iterable[Remedy],
        *,
        retry_count: int = 0,
        meta: Optional[RunMetadata] = None,
    ) -> RemedyResult:
        """Apply ``remedies`` in precedence order, recursing for follow-up failures.

        ``retry_count`` grows by one per nested level; past
        ``settings.max_retries`` the chain stops with whatever is left.
        """
        pending: Set[Remedy] = set(remedies)
        if not pending - {Remedy.USER_WARNING}:
            return RemedyResult()
        if retry_count > self.settings.max_retries:
            return self._fail("retry limit reached", pending, retry_count, meta)
        if pending & TERMINAL_REMEDIES:
            return self._fail("operator action required", pending - {Remedy.USER_WARNING}, retry_count, meta)

        replanned: Optional[CycleResult] = None

        if Remedy.INIT in pending:
            pending.discard(Remedy.INIT)
            self.sink.log("Running terraform init ...", depth=2)
            status, init_meta = self.run_init()
            result = self.process_remedies(
                classify(init_meta, command="init", exit_code=status),
                retry_count=retry_count + 1,
                meta=init_meta,
            )
            if not result.ok:
                return result
            status, validate_meta = self.validate()
            result = self.process_remedies(
                classify(validate_meta, command="validate", exit_code=status),
                retry_count=retry_count + 1,
                meta=validate_meta,
            )
            if not result.ok:
                return result

        if Remedy.PLAN in pending:
            pending.discard(Remedy.PLAN)
            self.sink.log("Re-running plan ...", depth=2)
            replanned = self.run_plan(targets=self.targets, retry_count=retry_count + 1)
            if not replanned.status.successful:
                if replanned.failure is not None:
                    return RemedyResult(failure=replanned.failure, plan=replanned)
                failed = self._fail("plan did not succeed", {Remedy.PLAN}, retry_count, replanned.meta)
                failed.plan = replanned
                return failed

        if Remedy.RECONFIGURE in pending:
            pending.discard(Remedy.RECONFIGURE)
            result = self._reconfigure(retry_count)
            if not result.ok:
                return result

        blocking = pending - {Remedy.USER_WARNING}
        if Remedy.UNLOCK in blocking:
            return self._fail("state is locked", blocking, retry_count, meta)
        if Remedy.UNKNOWN in blocking:
            return self._fail("unrecognised failure", blocking, retry_count, meta)
        if blocking:
            return self._fail("unprocessed remedies", blocking, retry_count, meta)
        return RemedyResult(plan=replanned)

    def _reconfigure(self, retry_count: int) -> RemedyResult:
        attempts = max(self.settings.reconfigure_attempts, 1)
        last_meta: Optional[RunMetadata] = None
        for attempt in range(1, attempts + 1):
            self.sink.log(f"Running terraform init -reconfigure (attempt {attempt}/{attempts}) ...", depth=2)
            status, last_meta = self.run_init(reconfigure=True)
            init_remedies = classify(last_meta, command="init", exit_code=status)
            if Remedy.RECONFIGURE in init_remedies and not init_remedies & TERMINAL_REMEDIES:
                LOGGER.info("init -reconfigure attempt %d still reports a reconfigure", attempt)
                continue
            return self.process_remedies(init_remedies, retry_count=retry_count + 1, meta=last_meta)
        return self._fail(
            f"init -reconfigure did not succeed after {attempts} attempts",
            {Remedy.RECONFIGURE},
            retry_count,
            last_meta,
        )

    # ----------------------------------------------------------------- cycles
    def run_validate(self, *, retry_count: int = 0) -> RemedyResult:
        status, meta = self.validate()
        remedies = classify(meta, command="validate", exit_code=status)
        return self.process_remedies(remedies, retry_count=retry_count, meta=meta)

    def run_plan(self, *, targets: Sequence[str] = (), retry_count: int = 0) -> CycleResult:
        """Plan once, then resolve and re-plan while the failure is recoverable."""
        self.targets = tuple(targets)
        status, exit_code, meta = self.create_plan(targets=targets)
        if status.successful:
            return CycleResult(status, meta)

        remedies = classify(meta, command="plan", exit_code=exit_code)
        result = self.process_remedies(remedies, retry_count=retry_count, meta=meta)
        if not result.ok:
            return CycleResult(status, meta, result.failure)
        if result.plan is not None:
            return result.plan
        return self.run_plan(targets=targets, retry_count=retry_count + 1)

    def run_cycle(self, *, targets: Sequence[str] = ()) -> CycleResult:
        """Validate (with remedies) and plan; the terminal status of a full run."""
        self.chain = RunMetadata()
        validation = self.run_validate()
        if not validation.ok:
            failure = validation.failure
            unresolved = failure.remedies - {Remedy.USER_WARNING} if failure is not None else frozenset()
            status = PlanStatus.UNKNOWN if unresolved == {Remedy.UNKNOWN} else PlanStatus.ERROR
            return CycleResult(status, self.chain, failure)
        result = self.run_plan(targets=targets)
        return CycleResult(result.status, self.chain, result.failure)

    def run_upgrade(self) -> RemedyResult:
        self.sink.log("Upgrading modules and providers ...", depth=1)
        status, meta = self.run_init(upgrade=True)
        return self.process_remedies(classify(meta, command="init", exit_code=status), meta=meta)

    def run_reconfigure(self) -> RemedyResult:
        self.sink.log("Reconfiguring backend ...", depth=1)
        status, meta = self.run_init(reconfigure=True)
        return self.process_remedies(classify(meta, command="init", exit_code=status), meta=meta)

    def summarize_plan(self) -> PlanSummary:
        return PlanSummary.from_file(self.terraform, self.plan_file)

    # ----------------------------------------------------------- operator ops
    def force_unlock(self, lock_info: LockInfo, confirm: Confirm, *, operator_supplied: bool = False) -> bool:
        """Release ``lock_info`` after explicit confirmation; never automatic.

        A lock id typed by the operator skips the "not a plan" warning, since
        its operation is not known here.
        """
        for row in format_lock_info(lock_info):
            self.sink.log(row, depth=1)
        if not lock_info.lock_id:
            self.sink.log("No lock id available; nothing to unlock.", depth=1)
            return False
        if not lock_info.is_plan_lock and not operator_supplied:
            warning = f"The lock was taken by {lock_info.operation or 'an unknown operation'}, not a plan. Unlock anyway?"
            if not confirm(warning):
                return False
        if not confirm(f"Force unlock lock {lock_info.lock_id}?"):
            return False
        status = self.terraform.force_unlock(lock_info.lock_id)
        if status != 0:
            self.sink.log(f"force-unlock failed with exit code {status}", depth=1)
            return False
        self.last_lock_info = None
        return True

    def apply(self) -> Tuple[int, Optional[CycleResult]]:
        """Apply the saved plan file and re-plan after a successful apply."""
        status = self.terraform.apply(filename=self.plan_file)
        if status != 0:
            self.sink.log("Apply Failed!", depth=1)
            return status, None
        return status, self.run_plan()

    def apply_selected(self, addresses: Sequence[str]) -> Tuple[int, Optional[CycleResult]]:
        """Plan only ``addresses`` and apply that targeted plan."""
        if not addresses:
            self.sink.log("nothing selected", depth=1)
            return 1, None
        self.sink.log("Re-running plan with the selected resources ...", depth=1)
        targeted = self.run_plan(targets=addresses)
        if targeted.status != PlanStatus.CHANGES:
            return (0 if targeted.status == PlanStatus.OK else 1), targeted
        return self.apply()


__all__ = ["Confirm", "CycleResult", "RemedyFailure", "RemedyOrchestrator", "RemedyResult"]
