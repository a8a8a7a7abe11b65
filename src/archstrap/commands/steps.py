"""The steps command: list the registry."""

import sys

import click

from archstrap.core.context import ArchstrapContext, pass_context
from archstrap.core.exceptions import ConfigError, RegistryError
from archstrap.provisioning import ExitCode
from archstrap.recipes import build_registry


@click.command("steps")
@click.option("--skip-optional", is_flag=True, help="Leave out the optional sections")
@pass_context
def steps(ctx: ArchstrapContext, skip_optional: bool) -> None:
    """List steps in execution order.

    \b
    Examples:
        archstrap steps
        archstrap steps --skip-optional
    """
    try:
        ordered = build_registry(ctx.config, ctx.adapters, skip_optional=skip_optional).topological_order()
    except (ConfigError, RegistryError) as e:
        ctx.output.print_error(str(e))
        sys.exit(ExitCode.INVALID_CONFIG)

    rows = [
        {
            "#": i,
            "Step": step.name,
            "Section": step.section or "base",
            "Required": "yes" if step.required else "",
            "Depends on": ", ".join(sorted(step.depends_on)),
            "Description": step.description,
        }
        for i, step in enumerate(ordered, start=1)
    ]
    ctx.output.print_table(rows, title="Bootstrap steps")
