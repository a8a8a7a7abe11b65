"""Core utilities and shared components for archstrap."""

# Note: Import context lazily to avoid circular imports
# Use: from archstrap.core.context import ArchstrapContext, pass_context
from archstrap.core.exceptions import (
    AdapterError,
    AlreadyRunningError,
    ArchstrapError,
    ConfigError,
    PreflightError,
    RegistryError,
)
from archstrap.core.output import OutputFormatter

__all__ = [
    "AdapterError",
    "AlreadyRunningError",
    "ArchstrapError",
    "ConfigError",
    "PreflightError",
    "RegistryError",
    "OutputFormatter",
]
