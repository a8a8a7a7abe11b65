"""The Arch Linux post-install bootstrap expressed as provisioning steps.

Base steps always run. Optional sections (gaming, nvidia, desktop, gui-apps)
are registered only when enabled in the configuration and not suppressed with
``--skip-optional``.
"""

import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from archstrap.adapters import Adapters
from archstrap.config import ArchstrapConfig
from archstrap.core.exceptions import AdapterError, ArchstrapError, PreflightError
from archstrap.core.logging import get_logger
from archstrap.provisioning.registry import StepRegistry
from archstrap.provisioning.schema import Step

logger = get_logger(__name__)

# sections whose packages come from the multilib repository
MULTILIB_SECTIONS = {"gaming", "nvidia"}

OH_MY_ZSH_URL = "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
GRUB_DEFAULTS = "/etc/default/grub"
GRUB_CFG = "/boot/grub/grub.cfg"
MKINITCPIO_CONF = "/etc/mkinitcpio.conf"
BOOT_DIR = "/boot"
INITRAMFS_IMAGES = "initramfs-*.img"
NVIDIA_MODESET = "nvidia-drm.modeset=1"
NVIDIA_MODULES = ["nvidia", "nvidia_modeset", "nvidia_uvm", "nvidia_drm"]
NVIDIA_POWER_SERVICES = ["nvidia-suspend", "nvidia-hibernate", "nvidia-resume"]

PLUGINS_MARKER = "# Plugins"
NEOFETCH_MARKER = "alias neofetch"
NEOFETCH_BLOCK = (
    "# neofetch was removed from the Arch repos, use fastfetch instead\n"
    "alias neofetch='fastfetch'\n"
)

NETWORK_HINT = "re-run after fixing network connectivity or the pacman mirrorlist"


@dataclass(frozen=True)
class DesktopProfile:
    packages: list[str]
    aur_packages: list[str] = field(default_factory=list)
    # repository groups, installed and checked member by member
    groups: list[str] = field(default_factory=list)
    display_manager: str | None = None


DESKTOPS = {
    "gnome": DesktopProfile(["gnome-tweaks", "gdm"], groups=["gnome"], display_manager="gdm"),
    "kde": DesktopProfile(["plasma-meta", "kde-applications-meta", "sddm"], display_manager="sddm"),
    "hyprland": DesktopProfile(
        ["hyprland", "kitty", "waybar", "wofi", "swaybg", "swaylock", "grim", "slurp"],
        aur_packages=["hyprpaper"],
    ),
}


def preflight() -> None:
    """Refuse to run as root; sudo is used per command instead."""
    if os.geteuid() == 0:
        raise PreflightError(
            "Don't run this as root. Run as your normal user (sudo will be used when needed)."
        )


def active_sections(config: ArchstrapConfig, skip_optional: bool = False) -> set[str]:
    if skip_optional:
        return set()
    return config.sections.enabled()


class BootstrapRecipe:
    """Builds the bootstrap steps from configuration and adapters.

    All ambient inputs (user name, home directory, current shell) come from
    ``config`` so steps can be exercised with fake adapters.
    """

    def __init__(self, config: ArchstrapConfig, adapters: Adapters):
        self.config = config
        self.adapters = adapters
        self.packages = adapters.packages
        self.services = adapters.services
        self.files = adapters.files
        self.users = adapters.users
        self.runner = adapters.runner

    @property
    def user(self) -> str:
        return self.config.user.get_name()

    @property
    def home(self) -> Path:
        return self.config.user.get_home()

    @property
    def zshrc(self) -> Path:
        return self.home / ".zshrc"

    def steps(self, sections: set[str]) -> list[Step]:
        """Steps in registration order for the given optional sections."""
        pkgs = self.config.packages
        timeouts = self.config.timeouts

        steps = [
            Step(
                "system-update",
                self.packages.upgrade_system,
                "Update the system",
                required=True,
                timeout=timeouts.system_upgrade,
                hint=NETWORK_HINT,
            ),
            Step(
                "essential-packages",
                lambda: self.packages.ensure_installed(pkgs.essential),
                "Install essential packages",
                required=True,
                depends_on={"system-update"},
                skip_check=lambda: not self.packages.missing(pkgs.essential),
                skip_reason="all essential packages installed",
                hint=NETWORK_HINT,
            ),
            Step(
                "core-services",
                lambda: self._enable_all(pkgs.core_services, now=True),
                "Enable core services",
                depends_on={"essential-packages"},
                skip_check=lambda: all(self.services.is_satisfied(s) for s in pkgs.core_services),
                skip_reason="core services already enabled",
            ),
            Step(
                "user-dirs",
                lambda: self.runner.run(["xdg-user-dirs-update"]),
                "Create XDG user directories",
                depends_on={"essential-packages"},
                skip_check=lambda: (self.home / ".config" / "user-dirs.dirs").is_file(),
                skip_reason="user directories already configured",
            ),
            Step(
                "mirrors",
                self.rank_mirrors,
                "Optimise pacman mirrors with reflector",
                depends_on={"essential-packages"},
                hint="mirrors unchanged; check reflector settings under 'mirrors'",
            ),
            Step(
                "parallel-downloads",
                lambda: self.files.ensure_pattern_replaced(
                    self.packages.pacman_conf, r"^#\s*ParallelDownloads", "ParallelDownloads"
                ),
                "Enable parallel downloads in pacman",
                skip_check=lambda: self.files.contains(self.packages.pacman_conf, r"^ParallelDownloads"),
                skip_reason="parallel downloads already enabled",
            ),
            Step(
                "multilib",
                lambda: self.packages.enable_repo("multilib"),
                "Enable the multilib repository",
                required=bool(sections & MULTILIB_SECTIONS),
                depends_on={"system-update"},
                skip_check=lambda: self.packages.repo_enabled("multilib"),
                skip_reason="multilib already enabled",
                hint="uncomment the [multilib] section in /etc/pacman.conf and re-run",
            ),
            Step(
                "aur-helper",
                self.packages.install_aur_helper,
                f"Install the {self.config.aur_helper} AUR helper",
                depends_on={"essential-packages"},
                skip_check=self.packages.has_aur_helper,
                skip_reason=f"{self.config.aur_helper} already installed",
                timeout=timeouts.aur_helper,
            ),
            Step(
                "dev-tools",
                lambda: self.packages.ensure_installed(pkgs.dev_tools),
                "Install development tools",
                depends_on={"essential-packages"},
                skip_check=lambda: not self.packages.missing(pkgs.dev_tools),
                skip_reason="development tools installed",
            ),
            Step(
                "rust-toolchain",
                lambda: self.runner.run(["rustup", "default", "stable"]),
                "Set up the stable Rust toolchain",
                depends_on={"dev-tools"},
                skip_check=self._rust_ready,
                skip_reason="stable toolchain is the default",
            ),
            Step(
                "docker",
                self.setup_docker,
                "Enable Docker and add the user to the docker group",
                depends_on={"dev-tools"},
                skip_check=lambda: self.services.is_satisfied("docker")
                and "docker" in self.users.groups_of(self.user),
                skip_reason="docker enabled and user in docker group",
            ),
            Step(
                "fonts",
                lambda: self.packages.ensure_installed(pkgs.fonts),
                "Install fonts",
                depends_on={"system-update"},
                skip_check=lambda: not self.packages.missing(pkgs.fonts),
                skip_reason="fonts installed",
            ),
            Step(
                "firewall",
                self.setup_firewall,
                "Set up the ufw firewall",
                depends_on={"system-update"},
                skip_check=self._firewall_active,
                skip_reason="firewall already active",
            ),
            Step(
                "zsh",
                self.setup_zsh,
                "Install zsh and make it the login shell",
                depends_on={"system-update"},
                skip_check=lambda: "zsh" in Path(self.config.user.get_shell()).name
                and self.packages.is_installed("zsh"),
                skip_reason="zsh is already the login shell",
            ),
            Step(
                "oh-my-zsh",
                self.install_oh_my_zsh,
                "Install Oh My Zsh",
                depends_on={"zsh"},
                skip_check=lambda: (self.home / ".oh-my-zsh").is_dir(),
                skip_reason="Oh My Zsh already installed",
            ),
            Step(
                "zsh-plugins",
                lambda: self.packages.ensure_installed(pkgs.zsh_plugins, aur=True),
                "Install zsh plugins",
                depends_on={"zsh", "aur-helper"},
                skip_check=lambda: not self.packages.missing(pkgs.zsh_plugins),
                skip_reason="zsh plugins installed",
            ),
            Step(
                "zshrc",
                self.configure_zshrc,
                "Configure zsh plugins and aliases in ~/.zshrc",
                depends_on={"zsh-plugins"},
                skip_check=self._zshrc_skip,
            ),
        ]

        if "gaming" in sections:
            steps += self._gaming_steps()
        if "nvidia" in sections:
            steps += self._nvidia_steps()
        if "desktop" in sections and self.config.sections.desktop:
            steps.append(self._desktop_step(self.config.sections.desktop))
        if "gui-apps" in sections:
            steps.append(
                Step(
                    "gui-apps",
                    self.install_gui_apps,
                    "Install GUI applications",
                    depends_on={"system-update", "aur-helper"},
                    skip_check=lambda: not self.packages.missing(pkgs.gui_apps + pkgs.gui_apps_aur),
                    skip_reason="GUI applications installed",
                    section="gui-apps",
                )
            )

        return steps

    def _gaming_steps(self) -> list[Step]:
        pkgs = self.config.packages
        return [
            Step(
                "gaming-packages",
                lambda: self.packages.ensure_installed(pkgs.gaming),
                "Install gaming packages",
                depends_on={"multilib"},
                skip_check=lambda: not self.packages.missing(pkgs.gaming),
                skip_reason="gaming packages installed",
                section="gaming",
            ),
            Step(
                "gaming-aur-packages",
                lambda: self.packages.ensure_installed(pkgs.gaming_aur, aur=True),
                "Install gaming packages from the AUR",
                depends_on={"gaming-packages", "aur-helper"},
                skip_check=lambda: not self.packages.missing(pkgs.gaming_aur),
                skip_reason="AUR gaming packages installed",
                section="gaming",
            ),
            Step(
                "gamemode-group",
                lambda: self.users.add_user_to_group(self.user, "gamemode"),
                "Add the user to the gamemode group",
                depends_on={"gaming-packages"},
                skip_check=lambda: "gamemode" in self.users.groups_of(self.user),
                skip_reason="user already in gamemode group",
                section="gaming",
            ),
        ]

    def _nvidia_steps(self) -> list[Step]:
        pkgs = self.config.packages
        return [
            Step(
                "nvidia-drivers",
                lambda: self.packages.ensure_installed(pkgs.nvidia),
                "Install NVIDIA drivers",
                depends_on={"multilib"},
                skip_check=lambda: not self.packages.missing(pkgs.nvidia),
                skip_reason="NVIDIA drivers installed",
                section="nvidia",
            ),
            Step(
                "nvidia-grub",
                self.configure_grub,
                "Enable nvidia-drm modesetting in GRUB",
                depends_on={"nvidia-drivers"},
                skip_check=self._grub_skip,
                section="nvidia",
            ),
            Step(
                "nvidia-initramfs",
                self.configure_initramfs,
                "Add NVIDIA modules to the initramfs",
                depends_on={"nvidia-drivers"},
                skip_check=self._initramfs_skip,
                section="nvidia",
            ),
            Step(
                "nvidia-power",
                lambda: self._enable_all(NVIDIA_POWER_SERVICES, now=False),
                "Enable NVIDIA suspend/hibernate/resume services",
                depends_on={"nvidia-drivers"},
                skip_check=lambda: all(self.services.is_enabled(s) for s in NVIDIA_POWER_SERVICES),
                skip_reason="NVIDIA power services enabled",
                section="nvidia",
            ),
        ]

    def _desktop_step(self, name: str) -> Step:
        profile = DESKTOPS[name]
        depends = {"system-update"}
        if profile.aur_packages:
            depends.add("aur-helper")

        def install() -> None:
            for group in profile.groups:
                self.packages.ensure_group_installed(group)
            self.packages.ensure_installed(profile.packages)
            if profile.aur_packages:
                self.packages.ensure_installed(profile.aur_packages, aur=True)
            if profile.display_manager:
                self.services.ensure_enabled(profile.display_manager, now=False)

        def done() -> bool:
            if self.packages.missing(profile.packages + profile.aur_packages):
                return False
            if not all(self.packages.group_installed(g) for g in profile.groups):
                return False
            return profile.display_manager is None or self.services.is_enabled(profile.display_manager)

        return Step(
            "desktop",
            install,
            f"Install the {name} desktop",
            depends_on=depends,
            skip_check=done,
            skip_reason=f"{name} already installed",
            section="desktop",
        )

    # actions

    def rank_mirrors(self) -> None:
        m = self.config.mirrors
        self.runner.run(
            [
                "reflector",
                "--country", m.country,
                "--age", str(m.age),
                "--protocol", m.protocol,
                "--sort", m.sort,
                "--save", m.mirrorlist,
            ],
            sudo=True,
        )

    def setup_docker(self) -> None:
        self.services.ensure_enabled("docker")
        self.users.add_user_to_group(self.user, "docker")

    def setup_firewall(self) -> None:
        self.packages.ensure_installed(self.config.packages.firewall)
        self.services.ensure_enabled("ufw")
        self.runner.run(["ufw", "default", "deny", "incoming"], sudo=True)
        self.runner.run(["ufw", "default", "allow", "outgoing"], sudo=True)
        self.runner.run(["ufw", "--force", "enable"], sudo=True)

    def setup_zsh(self) -> None:
        self.packages.ensure_installed(["zsh"])
        zsh = shutil.which("zsh") or "/usr/bin/zsh"
        self.users.ensure_login_shell(self.user, zsh)

    def install_oh_my_zsh(self) -> None:
        with tempfile.TemporaryDirectory(prefix="archstrap-") as tmp:
            script = str(Path(tmp) / "install.sh")
            self.runner.run(["curl", "-fsSL", "-o", script, OH_MY_ZSH_URL])
            self.runner.run(
                ["sh", script, "--unattended"],
                env={"RUNZSH": "no", "CHSH": "no", "KEEP_ZSHRC": "yes"},
            )

    def configure_zshrc(self) -> None:
        plugins = self.config.packages.zsh_plugins
        if plugins:
            block = PLUGINS_MARKER + "\n" + "".join(
                f"source /usr/share/zsh/plugins/{p}/{p}.zsh\n" for p in plugins
            )
            self.files.ensure_block_in_file(self.zshrc, block, marker=PLUGINS_MARKER)
        self.files.ensure_block_in_file(self.zshrc, NEOFETCH_BLOCK, marker=NEOFETCH_MARKER)

    def configure_grub(self) -> None:
        """Add the modeset flag to the kernel command line and regenerate grub.cfg.

        An already edited defaults file is left alone, so a run that failed
        while regenerating only re-runs ``grub-mkconfig``.
        """
        if not self.files.contains(GRUB_DEFAULTS, re.escape(NVIDIA_MODESET)):
            changed = self.files.ensure_pattern_replaced(
                GRUB_DEFAULTS,
                r'^GRUB_CMDLINE_LINUX_DEFAULT="',
                rf"\g<0>{NVIDIA_MODESET} ",
            )
            if not changed:
                raise AdapterError(f"GRUB_CMDLINE_LINUX_DEFAULT not found in {GRUB_DEFAULTS}")
        self.runner.run(["grub-mkconfig", "-o", GRUB_CFG], sudo=True)

    def configure_initramfs(self) -> None:
        """List the nvidia modules in mkinitcpio.conf and rebuild the images."""

        def add_modules(match: re.Match) -> str:
            modules = match.group(1).split()
            modules += [m for m in NVIDIA_MODULES if m not in modules]
            return f"MODULES=({' '.join(modules)})"

        modules = self._initramfs_modules()
        if modules is None:
            raise AdapterError(f"MODULES=() line not found in {MKINITCPIO_CONF}")
        if not set(NVIDIA_MODULES) <= set(modules):
            self.files.ensure_pattern_replaced(MKINITCPIO_CONF, r"^MODULES=\((.*)\)", add_modules)
        self.runner.run(["mkinitcpio", "-P"], sudo=True)

    def install_gui_apps(self) -> None:
        self.packages.ensure_installed(self.config.packages.gui_apps)
        self.packages.ensure_installed(self.config.packages.gui_apps_aur, aur=True)

    def _enable_all(self, services: list[str], now: bool) -> None:
        """Enable every service, then fail once listing the ones that could not be."""
        failed = []
        for name in services:
            try:
                self.services.ensure_enabled(name, now=now)
            except ArchstrapError as e:
                logger.warning("Could not enable %s: %s", name, e)
                failed.append(name)
        if failed:
            raise AdapterError(f"could not enable: {', '.join(failed)}")

    # skip checks

    def _rust_ready(self) -> bool:
        result = self.runner.run(["rustup", "default"], check=False)
        return result.ok and "stable" in result.stdout

    def _firewall_active(self) -> bool:
        if not self.packages.is_installed("ufw"):
            return False
        result = self.runner.run(["ufw", "status"], sudo=True, check=False)
        return result.ok and "Status: active" in result.stdout

    def _zshrc_skip(self) -> bool | str:
        if not self.zshrc.is_file():
            return "~/.zshrc not found"
        content = self.files.read(self.zshrc)
        plugins = self.config.packages.zsh_plugins
        plugins_done = not plugins or PLUGINS_MARKER in content
        if plugins_done and NEOFETCH_MARKER in content:
            return "~/.zshrc already configured"
        return False

    def _grub_skip(self) -> bool | str:
        if not self.files.exists(GRUB_DEFAULTS):
            return f"{GRUB_DEFAULTS} not found"
        flag = re.escape(NVIDIA_MODESET)
        if self.files.contains(GRUB_DEFAULTS, flag) and self._generated_contains(GRUB_CFG, flag):
            return "GRUB already configured for NVIDIA"
        return False

    def _generated_contains(self, path: str, pattern: str) -> bool:
        try:
            return self.files.contains(path, pattern)
        except AdapterError as e:
            # unreadable means unknown; regenerating is harmless
            logger.debug("Cannot check %s: %s", path, e)
            return False

    def _initramfs_modules(self) -> list[str] | None:
        match = re.search(r"^MODULES=\((.*)\)", self.files.read(MKINITCPIO_CONF), re.MULTILINE)
        return match.group(1).split() if match else None

    def _initramfs_current(self) -> bool:
        """True if every initramfs image was built after the last config edit."""
        images = list(Path(BOOT_DIR).glob(INITRAMFS_IMAGES))
        if not images:
            return False
        edited = Path(MKINITCPIO_CONF).stat().st_mtime
        return all(image.stat().st_mtime >= edited for image in images)

    def _initramfs_skip(self) -> bool | str:
        if not self.files.exists(MKINITCPIO_CONF):
            return f"{MKINITCPIO_CONF} not found"
        listed = set(self._initramfs_modules() or [])
        if set(NVIDIA_MODULES) <= listed and self._initramfs_current():
            return "NVIDIA modules already in initramfs"
        return False


def build_registry(
    config: ArchstrapConfig,
    adapters: Adapters,
    skip_optional: bool = False,
) -> StepRegistry:
    """Build and validate the bootstrap step registry."""
    sections = active_sections(config, skip_optional)
    recipe = BootstrapRecipe(config, adapters)
    registry = StepRegistry(recipe.steps(sections))
    logger.debug("Registered %d steps (sections: %s)", len(registry), ", ".join(sorted(sections)) or "none")
    return registry


def next_steps(sections: set[str]) -> list[str]:
    """Reminders printed after a completed run."""
    lines = []
    if "nvidia" in sections:
        lines.append("REBOOT to load the NVIDIA drivers, then run 'nvidia-smi' to verify the GPU")
    groups = ["docker"] + (["gamemode"] if "gaming" in sections else [])
    lines.append(f"Log out and back in for group changes ({', '.join(groups)})")
    lines.append('Set up your git config: git config --global user.name "Your Name"')
    lines.append('                        git config --global user.email "you@example.com"')
    if "desktop" not in sections:
        lines.append("Set sections.desktop (gnome, kde or hyprland) to install a desktop")
    return lines
