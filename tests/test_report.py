"""Tests for run reports: results, summaries and the JSON-lines log."""

import json
from datetime import datetime

import pytest

from archstrap.core.exceptions import AdapterError, StepTimeoutError
from archstrap.core.output import OutputFormatter
from archstrap.provisioning import ExitCode, OutcomeKind, RunReport, Step, StepOutcome, results
from archstrap.provisioning.report import (
    DEFAULT_HINT,
    format_line,
    render_report,
    summary_lines,
    write_log,
)


def noop() -> None:
    pass


@pytest.fixture
def report() -> RunReport:
    r = RunReport()
    r.record(Step("update", noop, required=True, hint="check the network"), StepOutcome.failed(AdapterError("pacman exited 1")))
    r.record(Step("docker", noop, depends_on={"update"}), StepOutcome.not_attempted("blocked by dependency 'update'"))
    r.record(Step("fonts", noop), StepOutcome.skipped("fonts installed"))
    r.record(Step("zsh", noop), StepOutcome.succeeded(started_at=datetime(2026, 1, 2, 3, 4, 5), duration=1.5))
    r.record(Step("firewall", noop), StepOutcome.failed(AdapterError("ufw missing")))
    return r.finalize()


class TestRunReport:
    """Tests for RunReport bookkeeping."""

    def test_record_twice_rejected(self):
        r = RunReport()
        s = Step("a", noop)
        r.record(s, StepOutcome.succeeded())
        with pytest.raises(RuntimeError):
            r.record(s, StepOutcome.skipped("again"))

    def test_record_after_finalize_rejected(self):
        r = RunReport().finalize()
        with pytest.raises(RuntimeError):
            r.record(Step("a", noop), StepOutcome.succeeded())

    def test_finalize_keeps_first_completion_time(self):
        r = RunReport()
        r.finalize()
        completed = r.completed_at
        r.finalize()
        assert r.completed_at == completed

    def test_counts(self, report):
        counts = report.counts()
        assert counts[OutcomeKind.SUCCEEDED] == 1
        assert counts[OutcomeKind.SKIPPED] == 1
        assert counts[OutcomeKind.FAILED] == 2
        assert counts[OutcomeKind.NOT_ATTEMPTED] == 1

    def test_failure_lists(self, report):
        assert [e.step.name for e in report.required_failures] == ["update"]
        assert [e.step.name for e in report.optional_failures] == ["firewall"]
        assert report.required_blocked == []

    def test_lookup(self, report):
        assert "zsh" in report
        assert "ghost" not in report
        assert report.outcome_of("ghost") is None
        assert report.kind_of("fonts") == OutcomeKind.SKIPPED

    def test_exit_code_precedence(self):
        r = RunReport()
        r.record(Step("a", noop, required=True), StepOutcome.failed(AdapterError("x")))
        r.record(Step("b", noop, required=True), StepOutcome.failed(StepTimeoutError("slow")))
        assert r.exit_code() == ExitCode.REQUIRED_TIMEOUT
        r.interrupted = True
        assert r.exit_code() == ExitCode.INTERRUPTED

    def test_to_dict(self, report):
        data = report.to_dict()
        assert data["exit_code"] == int(ExitCode.REQUIRED_FAILED)
        assert data["counts"]["failed"] == 2
        assert [s["step"] for s in data["steps"]] == ["update", "docker", "fonts", "zsh", "firewall"]


class TestSummary:
    """Tests for plain-text summaries."""

    def test_format_line(self, report):
        entries = report.entries
        assert format_line(entries[0]) == "[FAIL] update: pacman exited 1"
        assert format_line(entries[1]) == "[BLOCKED] docker: blocked by dependency 'update'"
        assert format_line(entries[3]) == "[OK] zsh"

    def test_summary_lines(self, report):
        lines = summary_lines(report)
        assert lines[:5] == [
            "[FAIL] update: pacman exited 1",
            "[BLOCKED] docker: blocked by dependency 'update'",
            "[SKIP] fonts: fonts installed",
            "[OK] zsh",
            "[FAIL] firewall: ufw missing",
        ]
        assert lines[5] == "OK 1  SKIP 1  FAIL 2  BLOCKED 1"
        assert lines[6] == "required step 'update' failed: pacman exited 1 (hint: check the network)"
        assert len(lines) == 7

    def test_default_hint(self):
        r = RunReport()
        r.record(Step("a", noop, required=True), StepOutcome.failed(AdapterError("x")))
        assert summary_lines(r)[-1].endswith(f"(hint: {DEFAULT_HINT})")

    def test_render_report(self, report, capsys):
        render_report(report, OutputFormatter(color=False))
        captured = capsys.readouterr()
        assert "Run report" in captured.out
        assert "optional step 'firewall' failed" in captured.out
        assert "required step 'update' failed" in captured.err
        assert "check the network" in captured.err

    def test_render_report_interrupted(self, capsys):
        r = RunReport(interrupted=True)
        r.record(Step("a", noop), StepOutcome.failed(AdapterError("interrupted by signal")))
        render_report(r.finalize(), OutputFormatter(color=False))
        assert "run interrupted" in capsys.readouterr().err

    def test_render_report_quiet_still_shows_errors(self, report, capsys):
        render_report(report, OutputFormatter(color=False, quiet=True))
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "required step 'update' failed" in captured.err


class TestWriteLog:
    """Tests for the JSON-lines report log."""

    def test_one_object_per_step_in_order(self, report, tmp_path):
        path = write_log(report, tmp_path / "logs" / "run.jsonl")
        lines = path.read_text().splitlines()
        assert len(lines) == 5
        records = [json.loads(line) for line in lines]
        assert [r["step"] for r in records] == ["update", "docker", "fonts", "zsh", "firewall"]
        assert list(records[0].keys()) == ["timestamp", "step", "outcome", "detail", "required", "duration"]
        assert records[0]["outcome"] == "failed"
        assert records[0]["required"] is True
        assert records[3]["timestamp"] == "2026-01-02T03:04:05"
        assert records[3]["duration"] == 1.5
        assert records[3]["detail"] is None

    def test_appends(self, report, tmp_path):
        path = tmp_path / "run.jsonl"
        write_log(report, path)
        write_log(report, path)
        assert len(path.read_text().splitlines()) == 10

    def test_timestamp_is_decision_time(self, tmp_path, monkeypatch):
        blocked = StepOutcome.not_attempted("blocked by dependency 'update'")
        r = RunReport()
        r.record(Step("docker", noop), blocked)
        r.finalize()

        class Later(datetime):
            @classmethod
            def now(cls, tz=None):
                return datetime(2030, 1, 1)

        monkeypatch.setattr(results, "datetime", Later)
        record = json.loads(write_log(r, tmp_path / "run.jsonl").read_text())
        assert record["timestamp"] == blocked.started_at.isoformat(timespec="seconds")
        assert not record["timestamp"].startswith("2030")
