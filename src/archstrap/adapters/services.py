"""systemd service management."""

from archstrap.core.command import CommandRunner
from archstrap.core.exceptions import ServiceNotFoundError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)

_UNIT_SUFFIXES = (".service", ".socket", ".timer", ".target", ".path", ".mount")


def unit_name(name: str) -> str:
    return name if name.endswith(_UNIT_SUFFIXES) else f"{name}.service"


class ServiceManager:
    """Enable system units through ``systemctl``."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def unit_exists(self, name: str) -> bool:
        result = self.runner.run(
            ["systemctl", "list-unit-files", "--no-legend", "--no-pager", unit_name(name)],
            check=False,
        )
        return result.ok and bool(result.stdout.strip())

    def is_enabled(self, name: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-enabled", "--quiet", unit_name(name)])

    def is_active(self, name: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-active", "--quiet", unit_name(name)])

    def is_satisfied(self, name: str, now: bool = True) -> bool:
        return self.is_enabled(name) and (not now or self.is_active(name))

    def ensure_enabled(self, name: str, now: bool = True) -> bool:
        """Enable (and with ``now``, start) a unit.

        Returns:
            True if systemctl was invoked, False if the unit was already in
            the desired state

        Raises:
            ServiceNotFoundError: the unit does not exist
            AdapterError: systemctl failed
        """
        unit = unit_name(name)
        if not self.unit_exists(unit):
            raise ServiceNotFoundError(unit)
        if self.is_satisfied(unit, now=now):
            logger.debug("%s already enabled", unit)
            return False

        argv = ["systemctl", "enable"]
        if now:
            argv.append("--now")
        self.runner.run([*argv, unit], sudo=True)
        logger.info("Enabled %s", unit)
        return True
