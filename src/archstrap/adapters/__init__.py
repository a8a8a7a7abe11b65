"""Capability adapters: the only code that mutates the system."""

from dataclasses import dataclass

from archstrap.adapters.files import FileEditor
from archstrap.adapters.packages import PackageManager
from archstrap.adapters.services import ServiceManager
from archstrap.adapters.users import UserManager
from archstrap.core.command import CommandRunner


@dataclass
class Adapters:
    """The adapters one run works with, sharing a single CommandRunner."""

    runner: CommandRunner
    packages: PackageManager
    services: ServiceManager
    files: FileEditor
    users: UserManager

    @classmethod
    def create(cls, runner: CommandRunner, aur_helper: str = "yay") -> "Adapters":
        files = FileEditor(runner)
        return cls(
            runner=runner,
            packages=PackageManager(runner, files, aur_helper=aur_helper),
            services=ServiceManager(runner),
            files=files,
            users=UserManager(runner),
        )


__all__ = [
    "Adapters",
    "FileEditor",
    "PackageManager",
    "ServiceManager",
    "UserManager",
]
