"""Tests for output formatting utilities."""

import logging

import pytest
import yaml

from archstrap.core.logging import (
    NO_STEP,
    LogLevel,
    StepFilter,
    StructuredLogger,
    current_step,
    get_logger,
    level_from_flags,
    setup_logging,
    step_scope,
)
from archstrap.core.output import OutputFormatter, format_duration


class TestFormatDuration:
    """Tests for format_duration utility."""

    def test_seconds(self):
        assert format_duration(30) == "30.0s"
        assert format_duration(59.9) == "59.9s"

    def test_minutes(self):
        assert format_duration(60) == "1.0m"
        assert format_duration(90) == "1.5m"

    def test_hours(self):
        assert format_duration(3600) == "1.0h"
        assert format_duration(7200) == "2.0h"


class TestOutputFormatter:
    """Tests for OutputFormatter."""

    def test_status_prefixes(self, capsys):
        output = OutputFormatter(color=False)
        output.print_success("installed")
        output.print_warning("careful")
        output.print_info("fyi")
        out = capsys.readouterr().out
        assert "[ OK ]  installed" in out
        assert "[WARN]  careful" in out
        assert "[INFO]  fyi" in out

    def test_errors_go_to_stderr(self, capsys):
        OutputFormatter(color=False).print_error("broken")
        captured = capsys.readouterr()
        assert "[ERR ]  broken" in captured.err
        assert captured.out == ""

    def test_quiet(self, capsys):
        output = OutputFormatter(color=False, quiet=True)
        output.print("hello")
        output.print_success("ok")
        output.print_panel("body", title="t")
        output.print_table([{"a": 1}])
        output.print_yaml({"a": 1})
        output.print_error("still shown")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "still shown" in captured.err

    def test_table(self, capsys):
        OutputFormatter(color=False).print_table(
            [{"Step": "docker", "Result": "OK"}, {"Step": "fonts", "Result": "SKIP"}],
            title="Results",
        )
        out = capsys.readouterr().out
        assert "Results" in out
        assert "docker" in out
        assert "SKIP" in out

    def test_empty_table(self, capsys):
        OutputFormatter(color=False).print_table([])
        assert "No data to display" in capsys.readouterr().out

    def test_yaml_plain(self, capsys):
        OutputFormatter(color=False).print_yaml({"mirrors": {"country": "Australia"}})
        assert yaml.safe_load(capsys.readouterr().out) == {"mirrors": {"country": "Australia"}}


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.addFilter(StepFilter())

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def recorded():
    handler = RecordingHandler()
    logger = logging.getLogger("archstrap")
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield handler
    logger.removeHandler(handler)
    logger.setLevel(previous)


class TestLogging:
    """Tests for logger setup and step attribution."""

    def test_namespaced(self):
        assert get_logger("engine").name == "archstrap.engine"
        assert get_logger("archstrap.recipes").name == "archstrap.recipes"

    def test_fields_rendered(self, caplog):
        with caplog.at_level("INFO", logger="archstrap.tests"):
            StructuredLogger("tests").info("Running", required=True)
        assert "Running [required=True]" in caplog.text

    def test_records_carry_step(self, recorded):
        logger = get_logger("tests")
        with step_scope("docker"):
            logger.info("inside")
            assert current_step() == "docker"
        logger.info("outside")
        assert [r.step for r in recorded.records] == ["docker", NO_STEP]
        assert current_step() is None

    def test_nested_scopes_restore(self):
        with step_scope("outer"):
            with step_scope("inner"):
                assert current_step() == "inner"
            assert current_step() == "outer"

    def test_plain_format_shows_step(self):
        setup_logging(LogLevel.INFO, rich_output=False)
        handler = logging.getLogger().handlers[0]
        record = logging.LogRecord("archstrap.core.command", logging.INFO, __file__, 1, "$ pacman -Syu", None, None)
        with step_scope("system-update"):
            handler.filter(record)
        assert "[system-update] archstrap.core.command: $ pacman -Syu" in handler.format(record)

    @pytest.mark.parametrize(
        "verbose,quiet,expected",
        [
            (0, False, LogLevel.WARNING),
            (1, False, LogLevel.INFO),
            (2, True, LogLevel.DEBUG),
            (0, True, LogLevel.ERROR),
        ],
    )
    def test_level_from_flags(self, verbose, quiet, expected):
        assert level_from_flags(verbose, quiet, LogLevel.WARNING) == expected
