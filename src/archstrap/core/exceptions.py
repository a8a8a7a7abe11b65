"""Custom exceptions for archstrap."""

from typing import Any


class ArchstrapError(Exception):
    """Base exception for all archstrap errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(ArchstrapError):
    """Configuration-related errors."""

    pass


class PreflightError(ArchstrapError):
    """Environment checks that must pass before anything is touched."""

    pass


class AlreadyRunningError(ArchstrapError):
    """Another archstrap run holds the run lock."""

    def __init__(self, message: str, lock_path: str | None = None):
        super().__init__(message)
        self.lock_path = lock_path


class RegistryError(ArchstrapError):
    """Step registry construction errors.

    These are raised before any system mutation happens.
    """

    pass


class DuplicateNameError(RegistryError):
    """A step with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"step '{name}' is already registered")
        self.name = name


class UnknownDependencyError(RegistryError):
    """A step depends on a name that is not registered."""

    def __init__(self, step: str, dependency: str):
        super().__init__(f"step '{step}' depends on unknown step '{dependency}'")
        self.step = step
        self.dependency = dependency


class CyclicDependencyError(RegistryError):
    """Raised when a circular dependency is detected."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        cycle_str = " -> ".join(cycle)
        super().__init__(f"circular dependency detected: {cycle_str}")


class UnknownStepError(RegistryError):
    """A step name requested by the caller is not registered."""

    def __init__(self, names: list[str]):
        super().__init__(f"unknown step(s): {', '.join(names)}")
        self.names = names


class AdapterError(ArchstrapError):
    """Failure reported by a capability adapter (package, service, file, user)."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ServiceNotFoundError(AdapterError):
    """The requested systemd unit does not exist."""

    def __init__(self, service: str):
        super().__init__(f"service unit not found: {service}")
        self.service = service


class StepTimeoutError(AdapterError):
    """A command exceeded the time allotted to its step."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        command: list[str] | None = None,
    ):
        super().__init__(message, command=command)
        self.timeout_seconds = timeout_seconds
