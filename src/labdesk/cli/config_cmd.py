"""Show and change labdesk settings."""

from __future__ import annotations

import click

from labdesk.cli.main import JsonGroup, LabDeskContext, pass_context


@click.group("config", cls=JsonGroup)
@pass_context
def config_cmd(ctx: LabDeskContext) -> None:
    """View or edit labdesk.toml."""
    pass


@config_cmd.command("show")
@pass_context
def config_show(ctx: LabDeskContext) -> None:
    """Print the effective configuration (defaults merged with the file)."""
    from labdesk.core.config import get_config_path

    if ctx.json_mode:
        ctx.formatter.json(ctx.config)
        return

    rows = [
        [f"{section}.{name}", str(value)]
        for section, values in ctx.config.items()
        for name, value in values.items()
    ]
    ctx.formatter.table(
        title=str(get_config_path()),
        columns=[("Setting", "bold"), ("Value", "")],
        rows=rows,
    )


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
@pass_context
def config_set(ctx: LabDeskContext, key: str, value: str) -> None:
    """Set KEY (section.name) to VALUE, e.g. general.actor "Dr. Chen"."""
    from labdesk.core.config import set_value

    config = set_value(key, value)
    section, _, name = key.partition(".")
    if ctx.json_mode:
        ctx.formatter.json({"key": key, "value": config[section][name]})
    else:
        ctx.formatter.success(f"{key} = {config[section][name]}")
