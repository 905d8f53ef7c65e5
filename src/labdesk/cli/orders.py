"""Order CLI commands."""

from __future__ import annotations

import click

from labdesk.cli.main import JsonGroup, LabDeskContext, pass_context
from labdesk.output.formatter import STATUS_STYLES, progress_bar, styled


@click.group(cls=JsonGroup)
@pass_context
def orders(ctx: LabDeskContext) -> None:
    """Manage orders (add, list, show, progress, transition, consistency)."""
    pass


@orders.command("add")
@click.option("--patient", "patient_name", required=True, help="Patient name.")
@click.option("--patient-id", default="", help="Patient identifier.")
@click.option("--panel", "panels", multiple=True, help="Panel name, code or id (repeatable).")
@click.option("--priority", type=click.Choice(["Normal", "Urgent", "STAT"]), default="Normal")
@click.option("--order-date", default=None, help="Order date (YYYY-MM-DD), default now.")
@click.option("--expected-date", default=None, help="Expected report date (YYYY-MM-DD).")
@click.option("--legacy", is_flag=True, help="Link panels through the legacy order_tests table.")
@pass_context
def orders_add(
    ctx: LabDeskContext,
    patient_name: str,
    patient_id: str,
    panels: tuple[str, ...],
    priority: str,
    order_date: str | None,
    expected_date: str | None,
    legacy: bool,
) -> None:
    """Create an order."""
    from labdesk.services.order_service import OrderService

    svc = OrderService(ctx.get_db())
    order = svc.add_order(
        patient_name=patient_name,
        panels=list(panels),
        patient_id=patient_id,
        priority=priority,
        order_date=order_date,
        expected_date=expected_date,
        legacy=legacy,
    )
    if ctx.json_mode:
        ctx.formatter.json(order.model_dump(mode="json"))
    else:
        ctx.formatter.success(f"Created order {order.id} for {order.patient_name} ({len(panels)} panels)")


@orders.command("list")
@click.option("--from", "date_from", default=None, help="Earliest order date (YYYY-MM-DD).")
@click.option("--to", "date_to", default=None, help="Latest order date (YYYY-MM-DD).")
@click.option("--status", default=None, help="Only orders in this status.")
@pass_context
def orders_list(ctx: LabDeskContext, date_from: str | None, date_to: str | None, status: str | None) -> None:
    """List orders, newest first."""
    from labdesk.services.order_service import OrderService

    order_list = OrderService(ctx.get_db()).list_orders(date_from=date_from, date_to=date_to, status=status)

    if ctx.json_mode:
        ctx.formatter.json([o.model_dump(mode="json") for o in order_list])
        return
    if not order_list:
        ctx.formatter.info("No orders found. Use 'labdesk orders add' to create one.")
        return

    ctx.formatter.table(
        title="Orders",
        columns=[
            ("ID", "dim"),
            ("Patient", "bold"),
            ("Status", ""),
            ("Priority", ""),
            ("Ordered", "cyan"),
            ("Expected", "cyan"),
        ],
        rows=[
            [
                o.id,
                o.patient_name,
                styled(o.status.value, STATUS_STYLES),
                o.priority,
                ctx.formatter.format_date(o.order_date),
                ctx.formatter.format_date(o.expected_date),
            ]
            for o in order_list
        ],
    )


@orders.command("show")
@click.argument("order_id")
@pass_context
def orders_show(ctx: LabDeskContext, order_id: str) -> None:
    """Show one order and its suggested next step."""
    from labdesk.services.order_service import OrderService
    from labdesk.services.workflow_service import next_action

    order = OrderService(ctx.get_db()).get_order(order_id)
    action = next_action(order.status)

    if ctx.json_mode:
        ctx.formatter.json(
            {
                **order.model_dump(mode="json"),
                "next_action": {"label": action[0], "status": action[1].value} if action else None,
            }
        )
        return

    lines = [
        f"[bold]Patient:[/bold] {order.patient_name} {order.patient_id}".rstrip(),
        f"[bold]Status:[/bold] {styled(order.status.value, STATUS_STYLES)}",
        f"[bold]Priority:[/bold] {order.priority}",
        f"[bold]Ordered:[/bold] {ctx.formatter.format_date(order.order_date)}",
        f"[bold]Expected:[/bold] {ctx.formatter.format_date(order.expected_date)}",
        f"[bold]Sample collected:[/bold] {ctx.formatter.format_date(order.sample_collected_at)}"
        + (f" by {order.sample_collected_by}" if order.sample_collected_by else ""),
    ]
    if action:
        lines.append(f"[bold]Next:[/bold] {action[0]} → {action[1].value}")
    ctx.formatter.panel("\n".join(lines), title=f"Order {order.id[:8]}")


@orders.command("progress")
@click.argument("order_id")
@pass_context
def orders_progress(ctx: LabDeskContext, order_id: str) -> None:
    """Show per-panel entry and approval progress."""
    from labdesk.services.progress_service import ProgressService

    progress = ProgressService(ctx.get_db(), cache=ctx.cache).get_order_progress(order_id)

    if ctx.json_mode:
        ctx.formatter.json(progress.model_dump(mode="json"))
        return

    ctx.formatter.table(
        title=f"Progress — order {order_id[:8]}",
        columns=[
            ("Panel", "bold"),
            ("Expected", "cyan"),
            ("Entered", ""),
            ("Approved", "green"),
            ("Status", ""),
            ("Entry", ""),
        ],
        rows=[
            [
                p.name,
                str(p.expected),
                str(p.entered),
                str(p.approved_count),
                styled(p.status.value, STATUS_STYLES),
                progress_bar(p.percent_entered),
            ]
            for p in progress.panels
        ],
    )
    ctx.formatter.print(
        f"Pending: {progress.pending_analytes}  For approval: {progress.for_approval_analytes}  "
        f"Approved: {progress.approved_total} / {progress.expected_total}"
    )


@orders.command("transition")
@click.argument("order_id")
@click.argument("status")
@pass_context
def orders_transition(ctx: LabDeskContext, order_id: str, status: str) -> None:
    """Move an order to STATUS if its preconditions hold."""
    from labdesk.services.workflow_service import WorkflowService

    result = WorkflowService(ctx.get_db(), actor=ctx.actor).transition(order_id, status)
    result.raise_if_denied()

    if ctx.json_mode:
        ctx.formatter.json(result.model_dump(mode="json"))
    else:
        ctx.formatter.success(f"Order {order_id[:8]} is now {result.updates['status']}")


@orders.command("consistency")
@click.argument("order_id")
@pass_context
def orders_consistency(ctx: LabDeskContext, order_id: str) -> None:
    """Check the status against the sample-collection fields."""
    from labdesk.services.workflow_service import WorkflowService

    report = WorkflowService(ctx.get_db()).check_consistency(order_id)

    if ctx.json_mode:
        ctx.formatter.json(report.model_dump(mode="json"))
    elif report.is_consistent:
        ctx.formatter.success("Status is consistent.")
    else:
        ctx.formatter.warning(f"{report.issue}. Recommended status: {report.recommended_status.value}")
