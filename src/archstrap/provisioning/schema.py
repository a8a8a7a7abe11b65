"""Provisioning step definition."""

from dataclasses import dataclass, field
from typing import Callable

SkipCheck = Callable[[], "bool | str | None"]


@dataclass(frozen=True)
class Step:
    """One named, idempotent unit of system mutation.

    ``action`` performs the mutation and raises on failure. ``skip_check``, when
    given, is consulted first; a truthy result skips the action. A string result
    is used as the skip reason, otherwise ``skip_reason`` is.
    """

    name: str
    action: Callable[[], object]
    description: str = ""
    required: bool = False
    depends_on: frozenset[str] = field(default_factory=frozenset)
    skip_check: SkipCheck | None = None
    skip_reason: str = "already satisfied"
    section: str | None = None
    timeout: float | None = None
    hint: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("step name must not be empty")
        # accept any iterable of names
        if not isinstance(self.depends_on, frozenset):
            object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("step timeout must be positive")
