"""Step outcomes and the per-run report."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator

from archstrap.core.exceptions import ArchstrapError, StepTimeoutError
from archstrap.provisioning.schema import Step


class OutcomeKind(str, Enum):
    """What happened to a step."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"

    @property
    def tag(self) -> str:
        return _TAGS[self]


_TAGS = {
    OutcomeKind.SUCCEEDED: "OK",
    OutcomeKind.SKIPPED: "SKIP",
    OutcomeKind.FAILED: "FAIL",
    OutcomeKind.NOT_ATTEMPTED: "BLOCKED",
}


class ExitCode(int, Enum):
    """Process exit status, one per failure class."""

    OK = 0
    ERROR = 1
    USAGE = 2
    INVALID_CONFIG = 3
    ALREADY_RUNNING = 4
    PREFLIGHT = 5
    REQUIRED_FAILED = 10
    REQUIRED_TIMEOUT = 11
    REQUIRED_BLOCKED = 12
    INTERRUPTED = 130


@dataclass(frozen=True)
class StepOutcome:
    """Result of one step. Never mutated after creation."""

    kind: OutcomeKind
    detail: str | None = None
    error: ArchstrapError | None = None
    # when the step started, or when it was decided not to run it
    started_at: datetime = field(default_factory=datetime.now)
    duration: float = 0.0

    @classmethod
    def succeeded(cls, **kwargs: Any) -> "StepOutcome":
        return cls(OutcomeKind.SUCCEEDED, **kwargs)

    @classmethod
    def skipped(cls, reason: str, **kwargs: Any) -> "StepOutcome":
        return cls(OutcomeKind.SKIPPED, detail=reason, **kwargs)

    @classmethod
    def failed(cls, error: ArchstrapError, **kwargs: Any) -> "StepOutcome":
        return cls(OutcomeKind.FAILED, detail=str(error), error=error, **kwargs)

    @classmethod
    def not_attempted(cls, reason: str, **kwargs: Any) -> "StepOutcome":
        return cls(OutcomeKind.NOT_ATTEMPTED, detail=reason, **kwargs)

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, StepTimeoutError)


@dataclass(frozen=True)
class ReportEntry:
    step: Step
    outcome: StepOutcome

    def to_dict(self) -> dict[str, Any]:
        """Flatten for the log file. Key order is part of the log format."""
        return {
            "timestamp": self.outcome.started_at.isoformat(timespec="seconds"),
            "step": self.step.name,
            "outcome": self.outcome.kind.value,
            "detail": self.outcome.detail,
            "required": self.step.required,
            "duration": round(self.outcome.duration, 3),
        }


@dataclass
class RunReport:
    """Ordered record of the outcomes of one run.

    Entries are kept in execution order. Each step is recorded at most once and
    nothing can be recorded after ``finalize()``.
    """

    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    interrupted: bool = False
    _entries: list[ReportEntry] = field(default_factory=list, init=False, repr=False)
    _index: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def record(self, step: Step, outcome: StepOutcome) -> None:
        if self.finalized:
            raise RuntimeError("run report is finalized")
        if step.name in self._index:
            raise RuntimeError(f"outcome for step '{step.name}' already recorded")
        self._index[step.name] = len(self._entries)
        self._entries.append(ReportEntry(step, outcome))

    def finalize(self) -> "RunReport":
        if self.completed_at is None:
            self.completed_at = datetime.now()
        return self

    @property
    def finalized(self) -> bool:
        return self.completed_at is not None

    @property
    def entries(self) -> tuple[ReportEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[ReportEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def outcome_of(self, name: str) -> StepOutcome | None:
        idx = self._index.get(name)
        return self._entries[idx].outcome if idx is not None else None

    def kind_of(self, name: str) -> OutcomeKind | None:
        outcome = self.outcome_of(name)
        return outcome.kind if outcome else None

    def counts(self) -> dict[OutcomeKind, int]:
        totals = {kind: 0 for kind in OutcomeKind}
        for entry in self._entries:
            totals[entry.outcome.kind] += 1
        return totals

    @property
    def required_failures(self) -> list[ReportEntry]:
        """Required steps that ran and failed."""
        return [
            e for e in self._entries
            if e.step.required and e.outcome.kind == OutcomeKind.FAILED
        ]

    @property
    def required_blocked(self) -> list[ReportEntry]:
        return [
            e for e in self._entries
            if e.step.required and e.outcome.kind == OutcomeKind.NOT_ATTEMPTED
        ]

    @property
    def optional_failures(self) -> list[ReportEntry]:
        return [
            e for e in self._entries
            if not e.step.required and e.outcome.kind == OutcomeKind.FAILED
        ]

    @property
    def success(self) -> bool:
        return self.exit_code() == ExitCode.OK

    def exit_code(self) -> ExitCode:
        """Exit status decided by required steps only."""
        if self.interrupted:
            return ExitCode.INTERRUPTED
        failures = self.required_failures
        if any(e.outcome.timed_out for e in failures):
            return ExitCode.REQUIRED_TIMEOUT
        if failures:
            return ExitCode.REQUIRED_FAILED
        if self.required_blocked:
            return ExitCode.REQUIRED_BLOCKED
        return ExitCode.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "interrupted": self.interrupted,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "counts": {kind.value: n for kind, n in self.counts().items()},
            "exit_code": int(self.exit_code()),
            "steps": [e.to_dict() for e in self._entries],
        }
