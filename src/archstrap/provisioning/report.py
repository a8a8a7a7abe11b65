"""Rendering and persisting run reports."""

import json
from pathlib import Path

from rich.markup import escape

from archstrap.core.logging import get_logger
from archstrap.core.output import OutputFormatter, format_duration
from archstrap.provisioning.results import OutcomeKind, ReportEntry, RunReport

logger = get_logger(__name__)

_TAG_STYLES = {
    OutcomeKind.SUCCEEDED: "green",
    OutcomeKind.SKIPPED: "dim",
    OutcomeKind.FAILED: "red",
    OutcomeKind.NOT_ATTEMPTED: "yellow",
}

DEFAULT_HINT = "fix the error above and re-run; completed steps will be skipped"


def format_line(entry: ReportEntry) -> str:
    """One plain-text report line, e.g. ``[FAIL] docker: command failed``."""
    line = f"[{entry.outcome.kind.tag}] {entry.step.name}"
    if entry.outcome.detail:
        line = f"{line}: {entry.outcome.detail}"
    return line


def summary_lines(report: RunReport) -> list[str]:
    """Plain-text report: one line per step, counts, then required failures."""
    lines = [format_line(entry) for entry in report]
    counts = report.counts()
    lines.append(
        "OK {ok}  SKIP {skip}  FAIL {fail}  BLOCKED {blocked}".format(
            ok=counts[OutcomeKind.SUCCEEDED],
            skip=counts[OutcomeKind.SKIPPED],
            fail=counts[OutcomeKind.FAILED],
            blocked=counts[OutcomeKind.NOT_ATTEMPTED],
        )
    )
    for entry in report.required_failures:
        lines.append(
            f"required step '{entry.step.name}' failed: {entry.outcome.detail} "
            f"(hint: {entry.step.hint or DEFAULT_HINT})"
        )
    return lines


def render_report(report: RunReport, output: OutputFormatter) -> None:
    """Print the report table, category counts and required failures."""
    rows = []
    for entry in report:
        style = _TAG_STYLES[entry.outcome.kind]
        rows.append(
            {
                "Result": f"[{style}]{entry.outcome.kind.tag}[/{style}]",
                "Step": entry.step.name,
                "Required": "yes" if entry.step.required else "",
                "Time": format_duration(entry.outcome.duration) if entry.outcome.duration else "",
                "Detail": escape(entry.outcome.detail or ""),
            }
        )

    title = "Run report (dry run)" if report.dry_run else "Run report"
    output.print("")
    output.print_table(rows, title=title)

    counts = report.counts()
    output.print(
        f"[green]OK {counts[OutcomeKind.SUCCEEDED]}[/green]  "
        f"[dim]SKIP {counts[OutcomeKind.SKIPPED]}[/dim]  "
        f"[red]FAIL {counts[OutcomeKind.FAILED]}[/red]  "
        f"[yellow]BLOCKED {counts[OutcomeKind.NOT_ATTEMPTED]}[/yellow]"
    )

    for entry in report.optional_failures:
        output.print_warning(f"optional step '{entry.step.name}' failed: {escape(entry.outcome.detail or '')}")

    for entry in report.required_failures:
        output.print_error(
            f"required step '{entry.step.name}' failed: {escape(entry.outcome.detail or '')}\n"
            f"        hint: {escape(entry.step.hint or DEFAULT_HINT)}"
        )

    if report.interrupted:
        output.print_error("run interrupted; the report above covers the steps executed so far")


def write_log(report: RunReport, path: str | Path) -> Path:
    """Append the report to ``path``, one JSON object per step.

    Fields appear in a fixed order: timestamp, step, outcome, detail,
    required, duration.
    """
    log_path = Path(path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a", encoding="utf-8") as f:
        for entry in report:
            f.write(json.dumps(entry.to_dict()) + "\n")
    logger.info("Wrote run report to %s", log_path)
    return log_path
