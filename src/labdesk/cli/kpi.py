"""KPI dashboard CLI commands."""

from __future__ import annotations

import click

from labdesk.cli.main import JsonGroup, LabDeskContext, pass_context
from labdesk.output.formatter import STATUS_STYLES, styled
from labdesk.services.kpi_service import Bucket

_BUCKET_LABELS = {
    "approved": "Approved",
    "for_approval": "For approval",
    "pending": "Pending",
    "overdue": "Overdue",
    "in_process": "In process",
}


@click.group(cls=JsonGroup)
@pass_context
def kpi(ctx: LabDeskContext) -> None:
    """Order KPIs: bucket counts and turnaround time."""
    pass


@kpi.command("summary")
@click.option("--from", "date_from", default=None, help="Earliest order date (YYYY-MM-DD).")
@click.option("--to", "date_to", default=None, help="Latest order date (YYYY-MM-DD).")
@pass_context
def kpi_summary(ctx: LabDeskContext, date_from: str | None, date_to: str | None) -> None:
    """Bucket counts and mean TAT over the order set."""
    from labdesk.services.kpi_service import KpiService

    summary = KpiService(ctx.get_db()).summary(date_from=date_from, date_to=date_to)
    if ctx.json_mode:
        ctx.formatter.json(summary.model_dump())
        return

    lines = [f"[bold]Orders:[/bold] {summary.total_orders}"]
    for key, count in summary.counts.items():
        lines.append(f"[bold]{_BUCKET_LABELS[key]}:[/bold] {count}")
    lines.append(f"[bold]Mean TAT:[/bold] {summary.mean_tat_hours:.1f} h")
    ctx.formatter.panel("\n".join(lines), title="Lab KPIs")


@kpi.command("bucket")
@click.argument("kind", type=click.Choice([b.value for b in Bucket]))
@click.option("--from", "date_from", default=None, help="Earliest order date (YYYY-MM-DD).")
@click.option("--to", "date_to", default=None, help="Latest order date (YYYY-MM-DD).")
@pass_context
def kpi_bucket(ctx: LabDeskContext, kind: str, date_from: str | None, date_to: str | None) -> None:
    """List the orders in one KPI bucket."""
    from labdesk.services.kpi_service import KpiService

    rows = KpiService(ctx.get_db()).bucket_rows(kind, date_from=date_from, date_to=date_to)
    if not rows and not ctx.json_mode:
        ctx.formatter.info(f"No orders in '{_BUCKET_LABELS[kind]}'.")
        return

    ctx.formatter.table(
        title=_BUCKET_LABELS[kind],
        columns=[
            ("ID", "dim"),
            ("Patient", "bold"),
            ("Status", ""),
            ("Ordered", "cyan"),
            ("Expected", "cyan"),
            ("Panels", "dim"),
        ],
        rows=[
            [
                r["id"],
                r["patient_name"],
                styled(r["status"], STATUS_STYLES),
                ctx.formatter.format_date(r["order_date"]),
                ctx.formatter.format_date(r["expected_date"]),
                ", ".join(r["panels"]),
            ]
            for r in rows
        ],
        data_for_json=rows,
    )
