"""Concrete step recipes."""

from archstrap.recipes.bootstrap import (
    BootstrapRecipe,
    active_sections,
    build_registry,
    next_steps,
    preflight,
)

__all__ = [
    "BootstrapRecipe",
    "active_sections",
    "build_registry",
    "next_steps",
    "preflight",
]
