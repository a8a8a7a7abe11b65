"""Tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from archstrap.config import (
    ArchstrapConfig,
    ConfigLoader,
    GlobalConfig,
    MirrorConfig,
    SectionsConfig,
    UserConfig,
    get_default_config,
    load_config,
)
from archstrap.core.exceptions import ConfigError
from archstrap.core.logging import LogLevel


class TestGlobalConfig:
    """Tests for GlobalConfig."""

    def test_default_values(self):
        config = GlobalConfig()
        assert config.color == "auto"
        assert config.verbosity == LogLevel.WARNING
        assert config.dry_run is False
        assert config.timeout == 600
        assert config.log_file is None

    def test_invalid_color(self):
        with pytest.raises(ValueError):
            GlobalConfig(color="sometimes")

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            GlobalConfig(timeout=0)

    def test_log_file_from_env(self, monkeypatch):
        monkeypatch.setenv("ARCHSTRAP_LOG_FILE", "/tmp/env.jsonl")
        assert GlobalConfig(log_file="/tmp/config.jsonl").get_log_file() == "/tmp/env.jsonl"

    def test_log_file_from_config(self):
        assert GlobalConfig(log_file="/tmp/config.jsonl").get_log_file() == "/tmp/config.jsonl"


class TestUserConfig:
    """Tests for UserConfig."""

    def test_explicit_values(self):
        config = UserConfig(name="alice", home="/home/alice", shell="/usr/bin/zsh")
        assert config.get_name() == "alice"
        assert config.get_home() == Path("/home/alice")
        assert config.get_shell() == "/usr/bin/zsh"

    def test_name_from_env(self, monkeypatch):
        monkeypatch.setenv("ARCHSTRAP_USER", "bob")
        assert UserConfig().get_name() == "bob"

    def test_name_falls_back_to_user(self):
        assert UserConfig().get_name() == "tester"

    def test_no_user(self, monkeypatch):
        monkeypatch.delenv("USER")
        with pytest.raises(ConfigError):
            UserConfig().get_name()

    def test_shell_from_env(self):
        assert UserConfig().get_shell() == "/bin/bash"


class TestSectionsConfig:
    def test_defaults(self):
        assert SectionsConfig().enabled() == {"gaming", "nvidia"}

    def test_all_enabled(self):
        sections = SectionsConfig(desktop="kde", gui_apps=True)
        assert sections.enabled() == {"gaming", "nvidia", "desktop", "gui-apps"}

    def test_unknown_desktop(self):
        with pytest.raises(ValueError):
            SectionsConfig(desktop="xfce")


class TestArchstrapConfig:
    """Tests for the aggregate model."""

    def test_defaults(self):
        config = get_default_config()
        assert config.aur_helper == "yay"
        assert config.mirrors == MirrorConfig()
        assert "base-devel" in config.packages.essential
        assert config.packages.core_services == ["NetworkManager", "bluetooth", "sshd"]
        assert config.packages.firewall == ["ufw"]
        assert config.timeouts.system_upgrade == 3600
        assert config.timeouts.aur_helper == 1800

    def test_global_alias(self):
        config = ArchstrapConfig(**{"global": {"color": "never"}})
        assert config.global_settings.color == "never"

    def test_dump_uses_alias(self):
        data = ArchstrapConfig().model_dump(mode="json", by_alias=True)
        assert "global" in data


class TestConfigLoader:
    """Tests for loading and merging YAML files."""

    def write(self, path: Path, data: dict) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.dump(data))
        return path

    def test_no_files(self):
        config = ConfigLoader().load()
        assert config == ArchstrapConfig()

    def test_user_config(self, tmp_path):
        self.write(tmp_path / "xdg-config" / "archstrap" / "config.yaml", {"mirrors": {"country": "Germany"}})
        assert load_config().mirrors.country == "Germany"

    def test_project_config_found_in_parent(self, tmp_path, monkeypatch):
        self.write(tmp_path / "work" / "archstrap.yaml", {"aur_helper": "paru"})
        nested = tmp_path / "work" / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_config().aur_helper == "paru"

    def test_merge_priority(self, tmp_path):
        self.write(
            tmp_path / "xdg-config" / "archstrap" / "config.yaml",
            {"mirrors": {"country": "Germany", "age": 6}, "sections": {"gaming": False}},
        )
        self.write(tmp_path / "work" / "archstrap.yaml", {"mirrors": {"country": "France"}})
        explicit = self.write(tmp_path / "explicit.yaml", {"mirrors": {"protocol": "http"}})

        config = load_config(explicit)
        assert config.mirrors.country == "France"
        assert config.mirrors.age == 6
        assert config.mirrors.protocol == "http"
        assert config.sections.gaming is False

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("mirrors: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_config(path)

    def test_validation_error_wrapped(self, tmp_path):
        path = self.write(tmp_path / "bad.yaml", {"global": {"color": "rainbow"}})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ArchstrapConfig()
