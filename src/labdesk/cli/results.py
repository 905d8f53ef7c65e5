"""Result entry and verification CLI commands."""

from __future__ import annotations

import click

from labdesk.cli.main import JsonGroup, LabDeskContext, pass_context
from labdesk.output.formatter import FLAG_STYLES, styled


def _verification_service(ctx: LabDeskContext):
    from labdesk.services.verification_service import VerificationService

    return VerificationService(
        ctx.get_db(),
        cache=ctx.cache,
        actor=ctx.actor,
        max_workers=ctx.max_workers,
    )


@click.group(cls=JsonGroup)
@pass_context
def results(ctx: LabDeskContext) -> None:
    """Enter and verify results (start, enter, list, approve, reject, stats)."""
    pass


@results.command("start")
@click.argument("order_id")
@click.argument("panel")
@click.option("--no-seed", is_flag=True, help="Do not pre-create empty rows for each analyte.")
@pass_context
def results_start(ctx: LabDeskContext, order_id: str, panel: str, no_seed: bool) -> None:
    """Open a result record for PANEL on an order."""
    from labdesk.services.order_service import PanelService
    from labdesk.services.result_entry_service import ResultEntryService

    db = ctx.get_db()
    group = PanelService(db).resolve(panel)
    record = ResultEntryService(db, cache=ctx.cache).start_result(order_id, group.id, seed_values=not no_seed)

    if ctx.json_mode:
        ctx.formatter.json(record.model_dump(mode="json"))
    else:
        ctx.formatter.success(f"Result {record.id} open for {record.test_name}")


@results.command("enter")
@click.argument("result_id")
@click.argument("analyte")
@click.argument("value")
@click.option("--flag", default=None, help="Flag: N, H, L, C (or High, Low, Critical, ...).")
@click.option("--unit", default=None, help="Override the analyte's unit.")
@pass_context
def results_enter(
    ctx: LabDeskContext,
    result_id: str,
    analyte: str,
    value: str,
    flag: str | None,
    unit: str | None,
) -> None:
    """Record VALUE for ANALYTE (id or name) on a result."""
    from labdesk.services.result_entry_service import ResultEntryService

    rv = ResultEntryService(ctx.get_db(), cache=ctx.cache).enter_value(
        result_id, analyte, value, flag=flag, unit=unit
    )
    if ctx.json_mode:
        ctx.formatter.json(rv.model_dump(mode="json"))
    else:
        flag_text = f" ({rv.flag.value})" if rv.flag else ""
        ctx.formatter.success(f"{rv.parameter} = {rv.value} {rv.unit}{flag_text}".rstrip())


@results.command("list")
@click.argument("order_id")
@pass_context
def results_list(ctx: LabDeskContext, order_id: str) -> None:
    """List result values of an order with their verification state."""
    from labdesk.models.result import ResultRecordRepository, ResultValueRepository

    db = ctx.get_db()
    records = {r.id: r for r in ResultRecordRepository(db).get_for_order(order_id)}
    values = ResultValueRepository(db).get_for_results(list(records))

    if ctx.json_mode:
        ctx.formatter.json(
            [
                {**r.model_dump(mode="json"), "values": [v.model_dump(mode="json") for v in values if v.result_id == rid]}
                for rid, r in records.items()
            ]
        )
        return
    if not records:
        ctx.formatter.info("No results yet. Use 'labdesk results start' to open one.")
        return

    ctx.formatter.table(
        title=f"Results — order {order_id[:8]}",
        columns=[
            ("Value ID", "dim"),
            ("Panel", "bold"),
            ("Analyte", ""),
            ("Value", "cyan"),
            ("Flag", ""),
            ("Verify", ""),
        ],
        rows=[
            [
                v.id,
                records[v.result_id].test_name,
                v.parameter,
                f"{v.value or '—'} {v.unit}".rstrip(),
                styled(v.flag.value if v.flag else None, FLAG_STYLES),
                v.verify_status.value,
            ]
            for v in values
        ],
    )


@results.command("approve")
@click.argument("value_ids", nargs=-1, required=True)
@click.option("--note", default=None, help="Note stored with a multi-value approval.")
@pass_context
def results_approve(ctx: LabDeskContext, value_ids: tuple[str, ...], note: str | None) -> None:
    """Approve one or more result values."""
    svc = _verification_service(ctx)
    if len(value_ids) == 1 and note is None:
        rv = svc.approve_analyte(value_ids[0])
        if ctx.json_mode:
            ctx.formatter.json(rv.model_dump(mode="json"))
        else:
            ctx.formatter.success(f"Approved {rv.parameter}")
        return
    _report_bulk(ctx, svc.bulk_approve_analytes(list(value_ids), note=note), "value")


@results.command("reject")
@click.argument("value_id")
@click.option("--note", default=None, help="Reason for rejection.")
@pass_context
def results_reject(ctx: LabDeskContext, value_id: str, note: str | None) -> None:
    """Reject a result value."""
    rv = _verification_service(ctx).reject_analyte(value_id, note=note)
    if ctx.json_mode:
        ctx.formatter.json(rv.model_dump(mode="json"))
    else:
        ctx.formatter.warning(f"Rejected {rv.parameter}" + (f": {rv.verify_note}" if rv.verify_note else ""))


@results.command("approve-panel")
@click.argument("result_id")
@pass_context
def results_approve_panel(ctx: LabDeskContext, result_id: str) -> None:
    """Approve every entered value of a result and finalize it."""
    record = _verification_service(ctx).approve_all_in_panel(result_id)
    if ctx.json_mode:
        ctx.formatter.json(record.model_dump(mode="json"))
    else:
        ctx.formatter.success(f"{record.test_name} approved and {record.verification_status.value}")


@results.command("bulk-approve")
@click.argument("result_ids", nargs=-1, required=True)
@pass_context
def results_bulk_approve(ctx: LabDeskContext, result_ids: tuple[str, ...]) -> None:
    """Approve several results at once; failures are reported per result."""
    _report_bulk(ctx, _verification_service(ctx).bulk_approve_selected(list(result_ids)), "result")


def _report_bulk(ctx: LabDeskContext, outcome, noun: str) -> None:
    if ctx.json_mode:
        ctx.formatter.json(outcome.model_dump(mode="json"), status="success" if outcome.ok else "partial")
    else:
        if outcome.succeeded:
            ctx.formatter.success(f"Approved {len(outcome.succeeded)} {noun}(s)")
        for item in outcome.failed:
            ctx.formatter.error(f"{item.id}: {item.reason}")
    if not outcome.ok:
        raise SystemExit(1)


@results.command("stats")
@click.argument("result_ids", nargs=-1)
@pass_context
def results_stats(ctx: LabDeskContext, result_ids: tuple[str, ...]) -> None:
    """Counts of results awaiting verification."""
    stats = _verification_service(ctx).get_verification_stats(list(result_ids) or None)
    if ctx.json_mode:
        ctx.formatter.json(stats.model_dump())
        return
    ctx.formatter.panel(
        f"Awaiting verification: [bold]{stats.total}[/bold]\n"
        f"Pending: {stats.pending}\n"
        f"Flagged: [yellow]{stats.flagged}[/yellow]\n"
        f"Critical: [bold red]{stats.critical}[/bold red]",
        title="Verification",
    )
