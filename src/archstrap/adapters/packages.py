"""pacman and AUR helper package management."""

import re
import shutil
import tempfile
from pathlib import Path
from typing import Iterable

from archstrap.adapters.files import FileEditor
from archstrap.core.command import CommandRunner
from archstrap.core.exceptions import AdapterError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)

PACMAN_CONF = "/etc/pacman.conf"
DEFAULT_MIRRORLIST = "/etc/pacman.d/mirrorlist"
AUR_BASE_URL = "https://aur.archlinux.org"


class PackageManager:
    """Install packages with pacman or an AUR helper.

    Only packages that ``pacman -Qi`` does not report as installed are passed
    to the installer, and ``--needed`` is always set, so repeated calls are
    no-ops.
    """

    def __init__(
        self,
        runner: CommandRunner,
        files: FileEditor,
        aur_helper: str = "yay",
        pacman_conf: str = PACMAN_CONF,
    ):
        self.runner = runner
        self.files = files
        self.aur_helper = aur_helper
        self.pacman_conf = pacman_conf

    def is_installed(self, name: str) -> bool:
        return self.runner.succeeds(["pacman", "-Qi", name])

    def missing(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if not self.is_installed(name)]

    def ensure_installed(self, names: Iterable[str], aur: bool = False) -> list[str]:
        """Install whichever of ``names`` are missing.

        Args:
            names: package names
            aur: install through the AUR helper instead of pacman

        Returns:
            The packages that were installed (empty if nothing was missing)
        """
        to_install = self.missing(names)
        if not to_install:
            return []

        if aur:
            if not self.has_aur_helper():
                raise AdapterError(
                    f"AUR helper '{self.aur_helper}' is not installed; "
                    f"cannot install {', '.join(to_install)}"
                )
            self.runner.run([self.aur_helper, "-S", "--noconfirm", "--needed", *to_install])
        else:
            self.runner.run(["pacman", "-S", "--noconfirm", "--needed", *to_install], sudo=True)

        logger.info("Installed %s", ", ".join(to_install))
        return to_install

    def group_installed(self, group: str) -> bool:
        """True if every package of the repository group ``group`` is installed."""
        available = self.runner.run(["pacman", "-Sgq", group], check=False)
        members = set(available.stdout.split())
        if not available.ok or not members:
            return False
        installed = self.runner.run(["pacman", "-Qgq", group], check=False)
        return members <= set(installed.stdout.split())

    def ensure_group_installed(self, group: str) -> bool:
        """Install the whole package group unless it is already complete."""
        if self.group_installed(group):
            return False
        self.runner.run(["pacman", "-S", "--noconfirm", "--needed", group], sudo=True)
        logger.info("Installed package group %s", group)
        return True

    def upgrade_system(self) -> None:
        self.runner.run(["pacman", "-Syu", "--noconfirm"], sudo=True)

    def sync_databases(self) -> None:
        self.runner.run(["pacman", "-Sy", "--noconfirm"], sudo=True)

    def repo_enabled(self, name: str) -> bool:
        return self.files.contains(self.pacman_conf, rf"^\[{re.escape(name)}\]")

    def enable_repo(self, name: str) -> bool:
        """Enable a pacman repository section such as ``multilib``.

        Uncomments ``#[name]`` and the ``#Include`` line that follows it; if
        the config has no commented section, one is appended. Databases are
        synced afterwards.
        """
        if self.repo_enabled(name):
            return False

        section = re.escape(name)
        pattern = rf"^#\[{section}\]\s*\n#\s*Include\s*=\s*(.+)$"
        changed = self.files.ensure_pattern_replaced(
            self.pacman_conf,
            pattern,
            lambda m: f"[{name}]\nInclude = {m.group(1).strip()}",
        )
        if not changed:
            # "#[name]" would satisfy a plain "[name]" marker, so anchor at a line start
            self.files.ensure_block_in_file(
                self.pacman_conf,
                f"[{name}]\nInclude = {DEFAULT_MIRRORLIST}\n",
                marker=f"\n[{name}]",
            )
        if not self.repo_enabled(name):
            raise AdapterError(f"could not enable repository {name} in {self.pacman_conf}")

        logger.info("Enabled pacman repository %s", name)
        self.sync_databases()
        return True

    def has_aur_helper(self) -> bool:
        return shutil.which(self.aur_helper) is not None

    def install_aur_helper(self) -> bool:
        """Build and install the AUR helper from its ``-bin`` package."""
        if self.has_aur_helper():
            return False

        package = f"{self.aur_helper}-bin"
        with tempfile.TemporaryDirectory(prefix="archstrap-") as tmp:
            clone_dir = Path(tmp) / package
            self.runner.run(["git", "clone", f"{AUR_BASE_URL}/{package}.git", str(clone_dir)])
            self.runner.run(["makepkg", "-si", "--noconfirm"], cwd=str(clone_dir))

        logger.info("Installed AUR helper %s", self.aur_helper)
        return True
