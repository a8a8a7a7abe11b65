"""User and group membership changes."""

from archstrap.core.command import CommandRunner
from archstrap.core.exceptions import AdapterError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)


class UserManager:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def groups_of(self, user: str) -> list[str]:
        result = self.runner.run(["id", "-nG", user], check=False)
        if not result.ok:
            raise AdapterError(f"unknown user: {user}", command=result.argv, returncode=result.returncode)
        return result.stdout.split()

    def group_exists(self, group: str) -> bool:
        return self.runner.succeeds(["getent", "group", group])

    def add_user_to_group(self, user: str, group: str) -> bool:
        """Add ``user`` to the supplementary ``group``.

        The change applies to new login sessions only.
        """
        if group in self.groups_of(user):
            return False
        if not self.group_exists(group):
            raise AdapterError(f"group does not exist: {group}")

        self.runner.run(["usermod", "-aG", group, user], sudo=True)
        logger.info("Added %s to group %s", user, group)
        return True

    def login_shell(self, user: str) -> str:
        result = self.runner.run(["getent", "passwd", user], check=False)
        fields = result.stdout.strip().split(":")
        if not result.ok or len(fields) < 7:
            raise AdapterError(f"unknown user: {user}", command=result.argv, returncode=result.returncode)
        return fields[6]

    def ensure_login_shell(self, user: str, shell: str) -> bool:
        if self.login_shell(user) == shell:
            return False
        self.runner.run(["chsh", "-s", shell, user], sudo=True)
        logger.info("Changed login shell of %s to %s", user, shell)
        return True
