"""Panel catalog CLI commands."""

from __future__ import annotations

import click

from labdesk.cli.main import JsonGroup, LabDeskContext, pass_context


def _parse_analyte(raw: str) -> dict[str, str]:
    """``NAME[|UNIT[|REFERENCE RANGE]]`` → analyte fields."""
    parts = [p.strip() for p in raw.split("|")]
    fields = {"name": parts[0]}
    if len(parts) > 1:
        fields["unit"] = parts[1]
    if len(parts) > 2:
        fields["reference_range"] = parts[2]
    return fields


@click.group(cls=JsonGroup)
@pass_context
def panels(ctx: LabDeskContext) -> None:
    """Manage panels (test groups) and their analytes."""
    pass


@panels.command("add")
@click.argument("name")
@click.option("--code", default="", help="Short panel code, e.g. CBC.")
@click.option("--category", default="", help="Category.")
@click.option("--department", default="", help="Lab department.")
@click.option("--tat-hours", type=int, default=None, help="Target turnaround in hours.")
@click.option(
    "--analyte",
    "analytes",
    multiple=True,
    help="Analyte as NAME|UNIT|REFERENCE RANGE (repeatable).",
)
@pass_context
def panels_add(
    ctx: LabDeskContext,
    name: str,
    code: str,
    category: str,
    department: str,
    tat_hours: int | None,
    analytes: tuple[str, ...],
) -> None:
    """Add a panel with its analytes."""
    from labdesk.services.order_service import PanelService

    group = PanelService(ctx.get_db()).add_panel(
        name=name,
        analytes=[_parse_analyte(a) for a in analytes],
        code=code,
        category=category,
        department=department,
        tat_hours=tat_hours,
    )
    if ctx.json_mode:
        ctx.formatter.json(group.model_dump(mode="json"))
    else:
        ctx.formatter.success(f"Added panel {group.name} with {len(analytes)} analytes")


@panels.command("list")
@pass_context
def panels_list(ctx: LabDeskContext) -> None:
    """List panels."""
    from labdesk.services.order_service import PanelService

    rows = PanelService(ctx.get_db()).list_panels()
    if not rows and not ctx.json_mode:
        ctx.formatter.info("No panels yet. Use 'labdesk panels add' to create one.")
        return

    ctx.formatter.table(
        title="Panels",
        columns=[
            ("Name", "bold"),
            ("Code", "cyan"),
            ("Department", ""),
            ("TAT (h)", ""),
            ("Analytes", "dim"),
        ],
        rows=[
            [
                r["name"],
                r["code"],
                r["department"],
                str(r["tat_hours"] or "—"),
                ", ".join(r["analytes"]),
            ]
            for r in rows
        ],
        data_for_json=rows,
    )
