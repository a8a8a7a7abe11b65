"""Pytest fixtures for archstrap tests."""

import os
from pathlib import Path
from typing import Generator, Mapping, Sequence

import pytest
from click.testing import CliRunner

from archstrap.adapters import Adapters
from archstrap.config import ArchstrapConfig, UserConfig
from archstrap.core.command import CommandResult, CommandRunner, format_argv
from archstrap.core.exceptions import AdapterError


class FakeRunner(CommandRunner):
    """CommandRunner that records argv instead of spawning processes.

    Responses are matched by argv prefix (including a leading ``sudo``); the
    most recently registered match wins. Unmatched commands succeed with no
    output.
    """

    def __init__(self):
        super().__init__(default_timeout=None)
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.envs: list[Mapping[str, str] | None] = []
        self._responses: list[tuple[list[str], int, str, str, BaseException | None]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        raises: BaseException | None = None,
    ) -> "FakeRunner":
        self._responses.insert(0, (list(prefix), returncode, stdout, stderr, raises))
        return self

    def run(
        self,
        argv: Sequence[str],
        *,
        sudo: bool = False,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        argv_list = list(argv)
        if sudo:
            argv_list = [self.sudo_command, *argv_list]
        self._timeout_for(argv_list, timeout)

        self.calls.append(argv_list)
        self.inputs.append(input_text)
        self.envs.append(env)

        returncode, stdout, stderr = 0, "", ""
        for prefix, rc, out, err, raises in self._responses:
            if argv_list[: len(prefix)] == prefix:
                if raises is not None:
                    raise raises
                returncode, stdout, stderr = rc, out, err
                break

        result = CommandResult(argv_list, returncode, stdout, stderr)
        if check and not result.ok:
            raise AdapterError(
                f"command failed ({returncode}): {format_argv(argv_list)}",
                command=argv_list,
                returncode=returncode,
                stderr=stderr,
            )
        return result

    def called(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    def calls_to(self, *prefix: str) -> list[list[str]]:
        return [call for call in self.calls if call[: len(prefix)] == list(prefix)]


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def adapters(fake_runner: FakeRunner) -> Adapters:
    return Adapters.create(fake_runner)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home" / "tester"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def config(home: Path) -> ArchstrapConfig:
    """Configuration for a fixed user with a temporary home directory."""
    return ArchstrapConfig(user=UserConfig(name="tester", home=str(home), shell="/bin/bash"))


@pytest.fixture
def use_fake_runner(monkeypatch, fake_runner: FakeRunner) -> FakeRunner:
    """Make CLI commands use the fake runner instead of real subprocesses."""
    monkeypatch.setattr("archstrap.core.command.CommandRunner", lambda **kwargs: fake_runner)
    return fake_runner


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path) -> Generator[None, None, None]:
    """Isolate each test from the invoking user's environment."""
    for var in ("ARCHSTRAP_CONFIG", "ARCHSTRAP_LOG_FILE", "ARCHSTRAP_USER"):
        monkeypatch.delenv(var, raising=False)

    monkeypatch.setenv("USER", "tester")
    monkeypatch.setenv("SHELL", "/bin/bash")
    # wide enough that rich tables never fold step names
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    runtime_dir = tmp_path / "xdg-runtime"
    runtime_dir.mkdir()
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(runtime_dir))

    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    # never run as root under test
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    yield


@pytest.fixture
def temp_config_file(tmp_path: Path, home: Path) -> str:
    """Create a temporary config file."""
    config_content = f"""
version: "1"
global:
  color: never
user:
  name: tester
  home: {home}
sections:
  gaming: false
  nvidia: false
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)
