"""Sequential execution of provisioning steps."""

import time
from contextlib import nullcontext
from datetime import datetime
from typing import TYPE_CHECKING, ContextManager, Iterable

from rich.markup import escape

from archstrap.core.exceptions import AdapterError, ArchstrapError
from archstrap.core.logging import StructuredLogger, step_scope
from archstrap.provisioning.results import OutcomeKind, RunReport, StepOutcome
from archstrap.provisioning.schema import Step

if TYPE_CHECKING:
    from archstrap.core.command import CommandRunner
    from archstrap.core.output import OutputFormatter

logger = StructuredLogger(__name__)

DRY_RUN_REASON = "dry-run"


class ExecutionEngine:
    """Run steps one at a time and record what happened to each.

    Failure policy:

    - a step whose dependency failed while required, or was itself not
      attempted, is not attempted;
    - an optional step that fails is recorded and the run continues;
    - a required step that fails halts the run, unless
      ``continue_on_required_failure`` is set.
    """

    def __init__(
        self,
        output: "OutputFormatter | None" = None,
        runner: "CommandRunner | None" = None,
        dry_run: bool = False,
        continue_on_required_failure: bool = False,
    ):
        self.output = output
        self.runner = runner
        self.dry_run = dry_run
        self.continue_on_required_failure = continue_on_required_failure

    def run(self, steps: Iterable[Step]) -> RunReport:
        """Execute steps in the given (topological) order.

        Args:
            steps: steps ordered so that dependencies come first

        Returns:
            The finalized RunReport
        """
        ordered = list(steps)
        report = RunReport(dry_run=self.dry_run)
        by_name = {step.name: step for step in ordered}
        total = len(ordered)
        halted_by: str | None = None
        position = 0

        logger.info("Starting run", steps=total, dry_run=self.dry_run)

        try:
            for position, step in enumerate(ordered):
                if halted_by is not None:
                    report.record(
                        step,
                        StepOutcome.not_attempted(
                            f"halted after required step '{halted_by}' failed"
                        ),
                    )
                    continue

                self._announce(step, position + 1, total)
                outcome = self._execute(step, report, by_name)
                report.record(step, outcome)
                self._print_outcome(step, outcome)

                if (
                    outcome.kind == OutcomeKind.FAILED
                    and step.required
                    and not self.continue_on_required_failure
                ):
                    halted_by = step.name
                    logger.error("Required step failed, halting", step=step.name)

        except KeyboardInterrupt:
            report.interrupted = True
            logger.warning("Run interrupted", step=ordered[position].name if ordered else None)
            for step in ordered[position:]:
                if step.name in report:
                    continue
                if step is ordered[position]:
                    report.record(
                        step,
                        StepOutcome.failed(AdapterError("interrupted by signal")),
                    )
                else:
                    report.record(step, StepOutcome.not_attempted("run interrupted"))

        report.finalize()
        counts = report.counts()
        logger.info(
            "Run finished",
            ok=counts[OutcomeKind.SUCCEEDED],
            skipped=counts[OutcomeKind.SKIPPED],
            failed=counts[OutcomeKind.FAILED],
            blocked=counts[OutcomeKind.NOT_ATTEMPTED],
        )
        return report

    def _execute(
        self,
        step: Step,
        report: RunReport,
        by_name: dict[str, Step],
    ) -> StepOutcome:
        blocker = self._blocking_dependency(step, report, by_name)
        if blocker is not None:
            return StepOutcome.not_attempted(f"blocked by dependency '{blocker}'")

        if self.dry_run:
            return StepOutcome.skipped(DRY_RUN_REASON)

        started_at = datetime.now()
        start = time.monotonic()

        with step_scope(step.name):
            try:
                with self._deadline(step.timeout):
                    if step.skip_check is not None:
                        verdict = step.skip_check()
                        if verdict:
                            reason = verdict if isinstance(verdict, str) else step.skip_reason
                            logger.info("Skipped", reason=reason)
                            return StepOutcome.skipped(
                                reason,
                                started_at=started_at,
                                duration=time.monotonic() - start,
                            )

                    logger.info("Running", required=step.required)
                    step.action()

            except ArchstrapError as e:
                logger.error("Step failed", error=e)
                return StepOutcome.failed(
                    e, started_at=started_at, duration=time.monotonic() - start
                )
            except Exception as e:
                logger.exception("Step raised unexpectedly")
                return StepOutcome.failed(
                    AdapterError(f"{type(e).__name__}: {e}"),
                    started_at=started_at,
                    duration=time.monotonic() - start,
                )

        return StepOutcome.succeeded(
            started_at=started_at, duration=time.monotonic() - start
        )

    def _blocking_dependency(
        self,
        step: Step,
        report: RunReport,
        by_name: dict[str, Step],
    ) -> str | None:
        for dep in sorted(step.depends_on):
            kind = report.kind_of(dep)
            if kind == OutcomeKind.NOT_ATTEMPTED:
                return dep
            if kind == OutcomeKind.FAILED and by_name[dep].required:
                return dep
        return None

    def _deadline(self, seconds: float | None) -> ContextManager[None]:
        if self.runner is None:
            return nullcontext()
        return self.runner.deadline(seconds)

    def _announce(self, step: Step, number: int, total: int) -> None:
        if self.output is None:
            return
        label = escape(step.description or step.name)
        self.output.print(f"\n[bold]Step {number}/{total}: {step.name}[/bold] [dim]{label}[/dim]")

    def _print_outcome(self, step: Step, outcome: StepOutcome) -> None:
        if self.output is None:
            return
        if outcome.kind == OutcomeKind.SUCCEEDED:
            self.output.print_success(step.name)
        elif outcome.kind == OutcomeKind.SKIPPED:
            self.output.print(f"[dim]Skipped ({escape(outcome.detail or '')})[/dim]")
        elif outcome.kind == OutcomeKind.FAILED and step.required:
            self.output.print_error(f"{step.name}: {escape(outcome.detail or '')}")
        elif outcome.kind == OutcomeKind.FAILED:
            self.output.print_warning(f"{step.name} failed, continuing: {escape(outcome.detail or '')}")
        else:
            self.output.print_warning(f"{step.name} not attempted: {escape(outcome.detail or '')}")
