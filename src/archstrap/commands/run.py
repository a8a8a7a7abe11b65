"""The run command: provision the system."""

import signal
import sys
from contextlib import contextmanager
from typing import Iterator

import click

from archstrap import __version__
from archstrap.core.context import ArchstrapContext, pass_context
from archstrap.core.exceptions import (
    AlreadyRunningError,
    ConfigError,
    PreflightError,
    RegistryError,
)
from archstrap.core.lock import RunLock
from archstrap.provisioning import ExecutionEngine, ExitCode, Step
from archstrap.provisioning.report import render_report, write_log
from archstrap.recipes import active_sections, build_registry, next_steps, preflight

# SIGINT already raises KeyboardInterrupt
INTERRUPT_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


@contextmanager
def interrupt_on_signals(signals: tuple[signal.Signals, ...] = INTERRUPT_SIGNALS) -> Iterator[None]:
    """Turn termination signals into KeyboardInterrupt for the duration of the block."""

    def handler(signum: int, frame: object) -> None:
        raise KeyboardInterrupt(signal.Signals(signum).name)

    previous = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def parse_only(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated and comma-separated ``--only`` values."""
    names = []
    for value in values:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def plan(ctx: ArchstrapContext, skip_optional: bool, only: list[str]) -> list[Step]:
    """Build, restrict and order the steps for this run.

    Raises:
        ConfigError, RegistryError
    """
    ctx.config.user.get_name()
    registry = build_registry(ctx.config, ctx.adapters, skip_optional=skip_optional)
    if only:
        registry = registry.select(only)
    return registry.topological_order()


def _banner(ctx: ArchstrapContext, steps: list[Step], sections: set[str], dry_run: bool) -> None:
    lines = [
        f"[bold]archstrap {__version__}[/bold]  Arch Linux post-install bootstrap",
        f"user: {ctx.config.user.get_name()}  steps: {len(steps)}  "
        f"sections: {', '.join(sorted(sections)) or 'none'}",
    ]
    if dry_run:
        lines.append("[yellow]dry run: no changes will be made[/yellow]")
    ctx.output.print_panel("\n".join(lines), title="archstrap")


@click.command("run")
@click.option("--skip-optional", is_flag=True, help="Skip the gaming, nvidia, desktop and gui-apps sections")
@click.option("--dry-run", is_flag=True, help="Report what would run without changing anything")
@click.option(
    "--only",
    multiple=True,
    metavar="NAME[,NAME...]",
    help="Run only these steps (repeatable or comma-separated)",
)
@click.option(
    "--continue-on-required-failure",
    is_flag=True,
    help="Keep going after a required step fails",
)
@click.option("--log-file", type=click.Path(dir_okay=False), metavar="PATH", help="Append the run report as JSON lines")
@click.option("--lock-file", type=click.Path(dir_okay=False), metavar="PATH", help="Run lock location")
@pass_context
def run(
    ctx: ArchstrapContext,
    skip_optional: bool,
    dry_run: bool,
    only: tuple[str, ...],
    continue_on_required_failure: bool,
    log_file: str | None,
    lock_file: str | None,
) -> None:
    """Provision this machine.

    Steps already in the desired state are skipped, so the command can be
    re-run after fixing a failure.

    \b
    Examples:
        archstrap run
        archstrap run --skip-optional
        archstrap run --dry-run
        archstrap run --only docker,firewall
    """
    dry_run = dry_run or ctx.dry_run
    settings = ctx.config.global_settings
    output = ctx.output

    try:
        preflight()
        steps = plan(ctx, skip_optional, parse_only(only))
    except PreflightError as e:
        output.print_error(str(e))
        sys.exit(ExitCode.PREFLIGHT)
    except (ConfigError, RegistryError) as e:
        output.print_error(str(e))
        sys.exit(ExitCode.INVALID_CONFIG)

    ctx.logger.info("Planned run", steps=len(steps), dry_run=dry_run)
    sections = active_sections(ctx.config, skip_optional)
    _banner(ctx, steps, sections, dry_run)

    engine = ExecutionEngine(
        output=output,
        runner=ctx.runner,
        dry_run=dry_run,
        continue_on_required_failure=continue_on_required_failure,
    )

    try:
        with RunLock(lock_file or settings.lock_file), interrupt_on_signals():
            report = engine.run(steps)
    except AlreadyRunningError as e:
        output.print_error(str(e))
        sys.exit(ExitCode.ALREADY_RUNNING)

    render_report(report, output)

    log_path = log_file or settings.get_log_file()
    if log_path:
        written = write_log(report, log_path)
        output.print_info(f"Report appended to {written}")

    code = report.exit_code()
    if code == ExitCode.OK and not dry_run:
        output.print_panel("\n".join(next_steps(sections)), title="Next steps", style="green")
    if code != ExitCode.OK:
        sys.exit(int(code))
