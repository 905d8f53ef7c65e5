"""Integration tests for CLI commands using Click's CliRunner."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from labdesk.cli.main import LabDeskContext, cli
from labdesk.core.database import DatabaseConnection
from labdesk.core.migrations import initialize_database


@pytest.fixture
def tmp_db():
    """Create a temporary database with full schema for CLI tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        db_path = Path(tmp_dir) / "test_cli.db"
        db = DatabaseConnection(db_path=db_path)
        db.connect()
        initialize_database(db)
        yield db
        db.close()


@pytest.fixture
def cli_runner(tmp_db, tmp_path, monkeypatch):
    """Return a CliRunner that patches LabDeskContext.get_db to use the temp DB.

    The config directory is pointed at an empty temp dir so defaults apply.
    """
    monkeypatch.setenv("LABDESK_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("USER", "cli-tester")
    runner = CliRunner()

    def patched_get_db(self):
        self._db = tmp_db
        return tmp_db

    with patch.object(LabDeskContext, "get_db", patched_get_db):
        yield runner


def run_json(runner, *args, exit_code=0):
    result = runner.invoke(cli, ["--json", *args], catch_exceptions=False)
    assert result.exit_code == exit_code, result.output
    return json.loads(result.stdout)


@pytest.fixture
def order(cli_runner):
    """A CBC panel and one order for it; returns the order JSON."""
    run_json(
        cli_runner,
        "panels", "add", "CBC",
        "--code", "CBC",
        "--analyte", "Hemoglobin|g/dL|13.5-17.5",
        "--analyte", "WBC|10^3/uL|4.5-11.0",
        "--analyte", "Platelets",
    )
    data = run_json(
        cli_runner,
        "orders", "add",
        "--patient", "Ada Lovelace",
        "--panel", "CBC",
        "--order-date", "2024-03-01",
        "--expected-date", "2024-03-02",
    )
    return data["data"]


class TestRootCLI:
    def test_help(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"], catch_exceptions=False)
        assert result.exit_code == 0
        for group in ("orders", "panels", "results", "kpi", "seed"):
            assert group in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"], catch_exceptions=False)
        assert result.exit_code == 0
        assert "labdesk" in result.output
        assert "0.1.0" in result.output


class TestPanelsCLI:
    def test_list_empty(self, cli_runner):
        data = run_json(cli_runner, "panels", "list")
        assert data == {"status": "success", "data": []}

    def test_add_and_list(self, cli_runner, order):
        data = run_json(cli_runner, "panels", "list")
        assert data["data"][0]["name"] == "CBC"
        assert sorted(data["data"][0]["analytes"]) == ["Hemoglobin", "Platelets", "WBC"]

    def test_duplicate_panel_is_json_error(self, cli_runner, order):
        data = run_json(cli_runner, "panels", "add", "CBC", exit_code=2)
        assert data["status"] == "error"
        assert "already exists" in data["error"]["message"]


class TestOrdersCLI:
    def test_add_and_show(self, cli_runner, order):
        assert order["status"] == "Order Created"
        data = run_json(cli_runner, "orders", "show", order["id"])
        assert data["data"]["patient_name"] == "Ada Lovelace"
        assert data["data"]["next_action"] == {"label": "Mark Sample Collected", "status": "Sample Collection"}

    def test_list_filters(self, cli_runner, order):
        assert len(run_json(cli_runner, "orders", "list")["data"]) == 1
        assert run_json(cli_runner, "orders", "list", "--from", "2024-03-02")["data"] == []
        assert run_json(cli_runner, "orders", "list", "--status", "In Progress")["data"] == []

    def test_show_missing_order(self, cli_runner):
        data = run_json(cli_runner, "orders", "show", "nope", exit_code=3)
        assert data["error"]["code"] == 3

    def test_refused_transition(self, cli_runner, order):
        data = run_json(cli_runner, "orders", "transition", order["id"], "In Progress", exit_code=2)
        assert "Sample must be collected" in data["error"]["message"]
        shown = run_json(cli_runner, "orders", "show", order["id"])
        assert shown["data"]["status"] == "Order Created"

    def test_transition_stamps_actor(self, cli_runner, order):
        data = run_json(cli_runner, "orders", "transition", order["id"], "Sample Collected")
        assert data["data"]["allowed"] is True
        shown = run_json(cli_runner, "orders", "show", order["id"])["data"]
        assert shown["status"] == "Sample Collection"
        assert shown["sample_collected_by"] == "cli-tester"

    def test_consistency(self, cli_runner, order):
        data = run_json(cli_runner, "orders", "consistency", order["id"])
        assert data["data"]["is_consistent"] is True

    def test_human_output(self, cli_runner, order):
        result = cli_runner.invoke(cli, ["orders", "list"], catch_exceptions=False)
        assert result.exit_code == 0
        assert "Ada" in result.output


class TestResultsCLI:
    def test_entry_and_approval_flow(self, cli_runner, order):
        rec = run_json(cli_runner, "results", "start", order["id"], "CBC")["data"]
        rv = run_json(cli_runner, "results", "enter", rec["id"], "Hemoglobin", "18.1", "--flag", "H")["data"]
        assert rv["flag"] == "High"
        run_json(cli_runner, "results", "enter", rec["id"], "wbc", "7.2")

        progress = run_json(cli_runner, "orders", "progress", order["id"])["data"]
        assert progress["expected_total"] == 3
        assert progress["entered_total"] == 2
        assert progress["panels"][0]["status"] == "In progress"

        stats = run_json(cli_runner, "results", "stats")["data"]
        assert stats == {"total": 1, "pending": 1, "flagged": 1, "critical": 0}

        sealed = run_json(cli_runner, "results", "approve-panel", rec["id"])["data"]
        assert sealed["verification_status"] == "verified"
        assert sealed["verified_by"] == "cli-tester"

        progress = run_json(cli_runner, "orders", "progress", order["id"])["data"]
        assert progress["approved_total"] == 2
        assert progress["pending_analytes"] == 1
        assert progress["for_approval_analytes"] == 0

    def test_reject_and_reapprove(self, cli_runner, order):
        rec = run_json(cli_runner, "results", "start", order["id"], "CBC")["data"]
        rv = run_json(cli_runner, "results", "enter", rec["id"], "Platelets", "90", "--flag", "L")["data"]
        rejected = run_json(cli_runner, "results", "reject", rv["id"], "--note", "clotted")["data"]
        assert rejected["verify_status"] == "rejected"
        assert rejected["verify_note"] == "clotted"
        approved = run_json(cli_runner, "results", "approve", rv["id"])["data"]
        assert approved["verify_status"] == "approved"

    def test_list_values(self, cli_runner, order):
        rec = run_json(cli_runner, "results", "start", order["id"], "CBC")["data"]
        data = run_json(cli_runner, "results", "list", order["id"])["data"]
        assert data[0]["id"] == rec["id"]
        assert len(data[0]["values"]) == 3

    def test_bad_flag(self, cli_runner, order):
        rec = run_json(cli_runner, "results", "start", order["id"], "CBC")["data"]
        data = run_json(cli_runner, "results", "enter", rec["id"], "WBC", "7", "--flag", "??", exit_code=2)
        assert "flag" in data["error"]["message"]

    def test_bulk_approve_reports_failures(self, cli_runner, order):
        rec = run_json(cli_runner, "results", "start", order["id"], "CBC")["data"]
        run_json(cli_runner, "results", "enter", rec["id"], "WBC", "7")
        data = run_json(cli_runner, "results", "bulk-approve", rec["id"], "ghost", exit_code=1)
        assert data["status"] == "partial"
        assert data["data"]["succeeded"] == [rec["id"]]
        assert data["data"]["failed"][0]["id"] == "ghost"


class TestKpiCLI:
    def test_summary(self, cli_runner, order):
        data = run_json(cli_runner, "kpi", "summary")["data"]
        assert data["total_orders"] == 1
        assert data["counts"]["pending"] == 1
        assert data["counts"]["overdue"] == 1

    def test_bucket(self, cli_runner, order):
        rows = run_json(cli_runner, "kpi", "bucket", "overdue")["data"]
        assert rows[0]["id"] == order["id"]
        assert rows[0]["panels"] == ["CBC"]


class TestSeedCLI:
    def test_seed_demo_json(self, cli_runner):
        data = run_json(cli_runner, "seed", "--yes", "--profile", "demo")["data"]
        assert data["profile"] == "demo"
        assert data["counts"]["panels"] == 3
        assert data["counts"]["orders"] == 4

        summary = run_json(cli_runner, "kpi", "summary")["data"]
        assert summary["total_orders"] == 4
        assert summary["counts"]["approved"] == 1
        assert summary["counts"]["overdue"] == 1

    def test_seed_minimal_json(self, cli_runner):
        data = run_json(cli_runner, "seed", "--profile", "minimal")["data"]
        assert data["counts"] == {"panels": 3}
        assert run_json(cli_runner, "orders", "list")["data"] == []


class TestConfigCLI:
    def test_show_defaults(self, cli_runner):
        data = run_json(cli_runner, "config", "show")["data"]
        assert data["verification"]["max_workers"] == 4

    def test_set_persists(self, cli_runner, tmp_path):
        data = run_json(cli_runner, "config", "set", "verification.max_workers", "8")["data"]
        assert data == {"key": "verification.max_workers", "value": 8}
        run_json(cli_runner, "config", "set", "general.actor", "Dr. Chen")
        assert (tmp_path / "config" / "labdesk.toml").exists()
        shown = run_json(cli_runner, "config", "show")["data"]
        assert shown["general"]["actor"] == "Dr. Chen"
        assert shown["verification"]["max_workers"] == 8

    def test_set_unknown_key(self, cli_runner):
        data = run_json(cli_runner, "config", "set", "general.nope", "x", exit_code=1)
        assert data["status"] == "error"
        assert "Unknown setting" in data["error"]["message"]

    def test_set_bad_int(self, cli_runner):
        run_json(cli_runner, "config", "set", "verification.max_workers", "many", exit_code=1)
