"""Main CLI entry point for archstrap."""

import sys

import click
from rich.console import Console
from rich.markup import escape

from archstrap import __version__
from archstrap.commands.run import run
from archstrap.commands.steps import steps
from archstrap.config import load_config
from archstrap.core.context import ArchstrapContext
from archstrap.core.exceptions import ArchstrapError, ConfigError
from archstrap.provisioning import ExitCode


CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"archstrap version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info, -vv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would happen without making changes",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    metavar="FILE",
    envvar="ARCHSTRAP_CONFIG",
    help="Path to config file",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: int,
    quiet: bool,
    dry_run: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """archstrap - idempotent Arch Linux post-install bootstrap.

    Installs packages, enables services and edits system configuration as a
    series of named steps. Every step checks the current state first, so
    re-running only does what is left.

    \b
    Examples:
        archstrap steps
        archstrap run --dry-run
        archstrap run --skip-optional
        archstrap config

    \b
    Configuration:
        ~/.config/archstrap/config.yaml    User configuration
        ./archstrap.yaml                   Project configuration
        ARCHSTRAP_*                        Environment variables
    """
    try:
        config = load_config(config_file)

        ctx.obj = ArchstrapContext(
            config=config,
            verbose=verbose,
            quiet=quiet,
            dry_run=dry_run,
            color=False if no_color else None,
        )

        if ctx.obj.dry_run and not quiet:
            ctx.obj.output.print_warning("Dry-run mode enabled - no changes will be made")

    except ConfigError as e:
        console = Console(stderr=True)
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(ExitCode.INVALID_CONFIG)


cli.add_command(run)
cli.add_command(steps)


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show the effective configuration."""
    archstrap_ctx: ArchstrapContext = ctx.obj
    cfg = archstrap_ctx.config
    data = cfg.model_dump(mode="json", by_alias=True)
    try:
        user_name = cfg.user.get_name()
    except ConfigError:
        user_name = None
    data["user"] = {
        "name": user_name,
        "home": str(cfg.user.get_home()),
        "shell": cfg.user.get_shell(),
    }
    data["global"]["log_file"] = cfg.global_settings.get_log_file()
    archstrap_ctx.output.print_yaml(data)


def main() -> None:
    """Main entry point."""
    try:
        cli.main(prog_name="archstrap", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(ExitCode.INTERRUPTED)
    except ArchstrapError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.ERROR)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(ExitCode.INTERRUPTED)


if __name__ == "__main__":
    main()
