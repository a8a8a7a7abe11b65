"""Provisioning-step engine: registry, execution and run reports."""

from archstrap.provisioning.engine import ExecutionEngine
from archstrap.provisioning.registry import StepRegistry
from archstrap.provisioning.results import ExitCode, OutcomeKind, RunReport, StepOutcome
from archstrap.provisioning.schema import Step

__all__ = [
    "ExecutionEngine",
    "ExitCode",
    "OutcomeKind",
    "RunReport",
    "Step",
    "StepOutcome",
    "StepRegistry",
]
