"""Seed data command — optional pre-population of example data."""

from __future__ import annotations

from datetime import date, timedelta

import click

from labdesk.cli.main import LabDeskContext, pass_context

_DEMO_PANELS = [
    {
        "name": "Complete Blood Count",
        "code": "CBC",
        "department": "Hematology",
        "tat_hours": 4,
        "analytes": [
            {"name": "Hemoglobin", "unit": "g/dL", "reference_range": "13.5-17.5"},
            {"name": "WBC", "unit": "10^3/uL", "reference_range": "4.5-11.0"},
            {"name": "Platelets", "unit": "10^3/uL", "reference_range": "150-450"},
            {"name": "Hematocrit", "unit": "%", "reference_range": "41-53"},
            {"name": "RBC", "unit": "10^6/uL", "reference_range": "4.5-5.9"},
        ],
    },
    {
        "name": "Lipid Panel",
        "code": "LIPID",
        "department": "Biochemistry",
        "tat_hours": 24,
        "analytes": [
            {"name": "Total Cholesterol", "unit": "mg/dL", "reference_range": "<200"},
            {"name": "HDL", "unit": "mg/dL", "reference_range": ">40"},
            {"name": "LDL", "unit": "mg/dL", "reference_range": "<100"},
            {"name": "Triglycerides", "unit": "mg/dL", "reference_range": "<150"},
        ],
    },
    {
        "name": "Thyroid Profile",
        "code": "TFT",
        "department": "Immunoassay",
        "tat_hours": 48,
        "analytes": [
            {"name": "TSH", "unit": "uIU/mL", "reference_range": "0.4-4.0"},
            {"name": "Free T4", "unit": "ng/dL", "reference_range": "0.8-1.8"},
        ],
    },
]


@click.command("seed")
@click.option(
    "--profile",
    type=click.Choice(["demo", "minimal"]),
    default="demo",
    help="Data profile: demo (panels, orders and results) or minimal (panels only).",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@pass_context
def seed_cmd(ctx: LabDeskContext, profile: str, yes: bool) -> None:
    """Populate the database with example data for testing or getting started."""
    db = ctx.get_db()

    if ctx.json_mode:
        ctx.formatter.json(_run_seed(db, profile, ctx.actor))
        return

    if not yes:
        click.confirm(
            f"This will populate your database with '{profile}' example data. Continue?",
            abort=True,
        )

    result = _run_seed(db, profile, ctx.actor)
    ctx.formatter.success(f"Seed complete ({profile} profile):")
    for entity, count in result["counts"].items():
        if count > 0:
            ctx.formatter.print(f"  {entity}: {count} records")


def _run_seed(db, profile: str, actor: str) -> dict:
    from labdesk.services.order_service import PanelService

    panel_svc = PanelService(db)
    for panel in _DEMO_PANELS:
        if panel_svc.groups.find_by_name(panel["name"]) is None:
            panel_svc.add_panel(**panel)
    counts = {"panels": len(_DEMO_PANELS)}
    if profile == "demo":
        counts.update(_seed_demo(db, actor))
    return {"profile": profile, "counts": counts}


def _seed_demo(db, actor: str) -> dict:
    """Orders spread across the workflow, with some results entered and approved."""
    from labdesk.services.order_service import OrderService, PanelService
    from labdesk.services.result_entry_service import ResultEntryService
    from labdesk.services.verification_service import VerificationService
    from labdesk.services.workflow_service import WorkflowService

    today = date.today()
    orders = OrderService(db)
    panels = PanelService(db)
    entry = ResultEntryService(db)
    verify = VerificationService(db, cache=entry.cache, actor=actor)
    workflow = WorkflowService(db, actor=actor)

    def day(offset: int) -> str:
        return (today + timedelta(days=offset)).isoformat()

    orders.add_order("Ada Lovelace", ["CBC"], order_date=day(0), expected_date=day(1))

    collected = orders.add_order("Alan Turing", ["LIPID"], priority="Urgent", order_date=day(-1), expected_date=day(1))
    workflow.transition(collected.id, "Sample Collection")

    # Legacy linkage, partly entered and overdue
    running = orders.add_order(
        "Grace Hopper", ["CBC", "TFT"], order_date=day(-3), expected_date=day(-1), legacy=True
    )
    workflow.transition(running.id, "Sample Collection")
    workflow.transition(running.id, "In Progress")
    rec = entry.start_result(running.id, panels.resolve("CBC").id)
    for name, value, flag in (("Hemoglobin", "14.2", "N"), ("WBC", "12.8", "H"), ("Platelets", "95", "L")):
        entry.enter_value(rec.id, name, value, flag=flag)

    done = orders.add_order("Katherine Johnson", ["TFT"], priority="STAT", order_date=day(-5), expected_date=day(-3))
    workflow.transition(done.id, "Sample Collection")
    workflow.transition(done.id, "In Progress")
    tft = entry.start_result(done.id, panels.resolve("TFT").id)
    entry.enter_value(tft.id, "TSH", "2.1", flag="N")
    entry.enter_value(tft.id, "Free T4", "0.5", flag="A")
    workflow.transition(done.id, "Pending Approval")
    verify.approve_all_in_panel(tft.id)
    workflow.transition(done.id, "Completed")

    return {"orders": 4, "results": 2, "values_entered": 5}
