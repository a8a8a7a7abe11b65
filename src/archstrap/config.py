"""Configuration management for archstrap using Pydantic."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from archstrap.core.exceptions import ConfigError
from archstrap.core.logging import LogLevel


class GlobalConfig(BaseModel):
    """Global settings."""

    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.WARNING
    dry_run: bool = False
    timeout: int = 600  # default per-command timeout, seconds
    log_file: str | None = None
    lock_file: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    def get_log_file(self) -> str | None:
        """Get the report log path from config or environment."""
        return os.environ.get("ARCHSTRAP_LOG_FILE") or self.log_file


class UserConfig(BaseModel):
    """The account being provisioned.

    Unset fields fall back to the invoking user's environment.
    """

    name: str | None = None
    home: str | None = None
    shell: str | None = None

    def get_name(self) -> str:
        name = self.name or os.environ.get("ARCHSTRAP_USER") or os.environ.get("USER")
        if not name:
            raise ConfigError("cannot determine the user to provision; set user.name")
        return name

    def get_home(self) -> Path:
        return Path(self.home or os.environ.get("HOME") or Path.home())

    def get_shell(self) -> str:
        return self.shell or os.environ.get("SHELL") or ""


class MirrorConfig(BaseModel):
    """reflector settings for ranking pacman mirrors."""

    country: str = "Australia"
    age: int = 12
    protocol: str = "https"
    sort: str = "rate"
    mirrorlist: str = "/etc/pacman.d/mirrorlist"


class PackagesConfig(BaseModel):
    """Package sets installed by the bootstrap."""

    essential: list[str] = Field(
        default_factory=lambda: [
            "base-devel", "git", "curl", "wget", "unzip", "zip", "p7zip",
            "htop", "btop", "fastfetch", "man-db", "man-pages", "openssh",
            "networkmanager", "bluez", "bluez-utils", "pipewire", "pipewire-alsa",
            "pipewire-pulse", "pipewire-jack", "wireplumber", "liblc3",
            "xdg-user-dirs", "xdg-utils", "reflector", "fzf", "ripgrep", "fd",
            "bat", "eza", "zoxide", "tldr", "tree", "jq", "less",
        ]
    )
    core_services: list[str] = Field(
        default_factory=lambda: ["NetworkManager", "bluetooth", "sshd"]
    )
    dev_tools: list[str] = Field(
        default_factory=lambda: [
            "vim", "neovim", "tmux", "python", "python-pip", "nodejs", "npm",
            "rustup", "docker", "docker-compose", "lazygit",
        ]
    )
    fonts: list[str] = Field(
        default_factory=lambda: [
            "ttf-jetbrains-mono-nerd", "ttf-firacode-nerd", "noto-fonts",
            "noto-fonts-cjk", "noto-fonts-emoji", "ttf-liberation",
        ]
    )
    firewall: list[str] = Field(default_factory=lambda: ["ufw"])
    zsh_plugins: list[str] = Field(
        default_factory=lambda: ["zsh-autosuggestions", "zsh-syntax-highlighting"]
    )
    gaming: list[str] = Field(
        default_factory=lambda: [
            "steam", "lutris", "wine-staging", "gamemode", "lib32-mesa",
            "vulkan-icd-loader", "lib32-vulkan-icd-loader", "vulkan-tools",
            "lib32-pipewire",
        ]
    )
    gaming_aur: list[str] = Field(
        default_factory=lambda: ["protonup-qt", "mangohud", "lib32-mangohud"]
    )
    nvidia: list[str] = Field(
        default_factory=lambda: [
            "nvidia", "nvidia-utils", "nvidia-settings", "lib32-nvidia-utils",
            "opencl-nvidia", "lib32-opencl-nvidia",
        ]
    )
    gui_apps: list[str] = Field(
        default_factory=lambda: [
            "firefox", "thunar", "vlc", "obs-studio", "gimp",
            "libreoffice-fresh", "discord",
        ]
    )
    gui_apps_aur: list[str] = Field(
        default_factory=lambda: ["visual-studio-code-bin", "spotify", "google-chrome"]
    )


class SectionsConfig(BaseModel):
    """Optional parts of the bootstrap."""

    gaming: bool = True
    nvidia: bool = True
    desktop: Literal["gnome", "kde", "hyprland"] | None = None
    gui_apps: bool = False

    def enabled(self) -> set[str]:
        """Names of the optional sections switched on."""
        names = set()
        if self.gaming:
            names.add("gaming")
        if self.nvidia:
            names.add("nvidia")
        if self.desktop:
            names.add("desktop")
        if self.gui_apps:
            names.add("gui-apps")
        return names


class TimeoutsConfig(BaseModel):
    """Time limits for long-running steps, in seconds."""

    system_upgrade: int = 3600
    aur_helper: int = 1800


class ArchstrapConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    user: UserConfig = Field(default_factory=UserConfig)
    mirrors: MirrorConfig = Field(default_factory=MirrorConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    sections: SectionsConfig = Field(default_factory=SectionsConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    aur_helper: str = "yay"


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = ["archstrap.yaml", "archstrap.yml", ".archstrap.yaml", ".archstrap.yml"]

    def load(self, config_file: str | Path | None = None) -> ArchstrapConfig:
        """Load configuration from files.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./archstrap.yaml)
        3. User config (~/.config/archstrap/config.yaml)

        Args:
            config_file: Optional explicit config file path

        Returns:
            Merged configuration
        """
        configs: list[dict[str, Any]] = []

        user_config_path = self.user_config_path()
        if user_config_path.exists():
            configs.append(self._load_yaml_file(user_config_path))

        project_config = self._find_project_config()
        if project_config:
            configs.append(self._load_yaml_file(project_config))

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            configs.append(self._load_yaml_file(config_path))

        merged = self._merge_configs(configs)

        try:
            return ArchstrapConfig(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

    @staticmethod
    def user_config_path() -> Path:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        base = Path(xdg) if xdg else Path.home() / ".config"
        return base / "archstrap" / "config.yaml"

    def _find_project_config(self) -> Path | None:
        """Find project config file in current or parent directories."""
        current = Path.cwd()

        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent

        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load a YAML config file."""
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content

    def _merge_configs(self, configs: list[dict[str, Any]]) -> dict[str, Any]:
        """Deep merge multiple configuration dictionaries."""
        result: dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


_config_loader = ConfigLoader()


def load_config(config_file: str | Path | None = None) -> ArchstrapConfig:
    """Load archstrap configuration.

    Args:
        config_file: Optional explicit config file path

    Returns:
        Loaded configuration
    """
    return _config_loader.load(config_file)


def get_default_config() -> ArchstrapConfig:
    """Get default configuration without loading from files."""
    return ArchstrapConfig()
