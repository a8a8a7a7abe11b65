"""Click context object for sharing state across commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from archstrap.config import ArchstrapConfig, get_default_config
from archstrap.core.logging import StructuredLogger, level_from_flags, setup_logging
from archstrap.core.output import OutputFormatter

if TYPE_CHECKING:
    from archstrap.adapters import Adapters
    from archstrap.core.command import CommandRunner


class ArchstrapContext:
    """Shared context object for archstrap commands.

    This object is passed through Click's context mechanism and provides
    access to configuration, output, and the capability adapters.
    """

    def __init__(
        self,
        config: ArchstrapConfig | None = None,
        verbose: int = 0,
        quiet: bool = False,
        dry_run: bool = False,
        color: bool | None = None,
    ):
        self._config = config or get_default_config()
        self._verbose = verbose
        self._quiet = quiet
        self._dry_run = dry_run or self._config.global_settings.dry_run

        if color is None:
            color = self._config.global_settings.color != "never"
        self._color = color

        log_level = level_from_flags(verbose, quiet, self._config.global_settings.verbosity)
        setup_logging(log_level, rich_output=color)
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(color=color, quiet=quiet)

        # Lazily created
        self._runner: CommandRunner | None = None
        self._adapters: Adapters | None = None

    @property
    def config(self) -> ArchstrapConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def output(self) -> OutputFormatter:
        """Get the output formatter."""
        return self._output

    @property
    def dry_run(self) -> bool:
        """Check if dry-run mode is enabled."""
        return self._dry_run

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def color(self) -> bool:
        return self._color

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def runner(self) -> "CommandRunner":
        """Get or create the command runner."""
        if self._runner is None:
            from archstrap.core.command import CommandRunner

            self._runner = CommandRunner(default_timeout=self._config.global_settings.timeout)
        return self._runner

    @property
    def adapters(self) -> "Adapters":
        """Get or create the capability adapters."""
        if self._adapters is None:
            from archstrap.adapters import Adapters

            self._adapters = Adapters.create(self.runner, aur_helper=self._config.aur_helper)
        return self._adapters


# Click decorator for passing context
pass_context = click.make_pass_decorator(ArchstrapContext, ensure=True)
