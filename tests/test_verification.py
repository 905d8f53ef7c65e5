"""Tests for result entry and the verification state machine."""

import tempfile
import threading
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import NotFoundError, PartialFailure, PersistenceError, ValidationError
from labdesk.core.migrations import initialize_database
from labdesk.models.result import Flag, ResultValueRepository, VerificationStatus, VerifyStatus
from labdesk.services.order_service import OrderService, PanelService
from labdesk.services.progress_service import PanelStatus, ProgressCache, ProgressService
from labdesk.services.result_entry_service import ResultEntryService
from labdesk.services.verification_service import VerificationService


@pytest.fixture
def db():
    with tempfile.TemporaryDirectory() as d:
        conn = DatabaseConnection(db_path=Path(d) / "test.db")
        conn.connect()
        initialize_database(conn)
        yield conn
        conn.close()


@pytest.fixture
def lab(db):
    """An order with two panels, each with one result record open."""
    panels = PanelService(db)
    cbc = panels.add_panel(
        "CBC",
        analytes=[{"name": "Hemoglobin"}, {"name": "WBC"}, {"name": "Platelets"}, {"name": "RBC"}, {"name": "MCV"}],
    )
    lipid = panels.add_panel("Lipid", analytes=[{"name": "HDL"}, {"name": "LDL"}])
    order = OrderService(db).add_order("Ada", ["CBC", "Lipid"], order_date="2024-03-01")

    cache = ProgressCache()
    entry = ResultEntryService(db, cache=cache)
    rec_a = entry.start_result(order.id, cbc.id)
    rec_b = entry.start_result(order.id, lipid.id)
    for name, value in (("Hemoglobin", "14"), ("WBC", "7"), ("Platelets", "250")):
        entry.enter_value(rec_a.id, name, value)
    entry.enter_value(rec_b.id, "HDL", "55")
    entry.enter_value(rec_b.id, "LDL", "120", flag="H")

    return {
        "order": order,
        "cache": cache,
        "entry": entry,
        "progress": ProgressService(db, cache=cache),
        "verify": VerificationService(db, cache=cache, actor="Dr. Reviewer"),
        "rec_a": rec_a,
        "rec_b": rec_b,
    }


def _panel(progress, name):
    return next(p for p in progress.panels if p.name == name)


class TestResultEntry:
    def test_start_result_seeds_empty_rows(self, db, lab):
        values = ResultValueRepository(db).get_for_result(lab["rec_a"].id)
        assert len(values) == 5
        assert sum(1 for v in values if v.is_entered) == 3
        assert all(v.verify_status is VerifyStatus.PENDING for v in values)

    def test_start_result_is_idempotent(self, db, lab):
        group = PanelService(db).resolve("CBC")
        again = lab["entry"].start_result(lab["order"].id, group.id)
        assert again.id == lab["rec_a"].id

    def test_start_result_for_unordered_panel(self, db, lab):
        other = PanelService(db).add_panel("TSH", analytes=[{"name": "TSH"}])
        with pytest.raises(NotFoundError):
            lab["entry"].start_result(lab["order"].id, other.id)

    def test_enter_value_normalizes_flag(self, lab):
        rv = lab["entry"].enter_value(lab["rec_a"].id, "MCV", "101", flag="HH")
        assert rv.flag is Flag.HIGH
        assert rv.value == "101"

    def test_enter_value_bad_flag(self, lab):
        with pytest.raises(ValidationError, match="flag"):
            lab["entry"].enter_value(lab["rec_a"].id, "MCV", "101", flag="X")

    def test_enter_value_unknown_analyte(self, lab):
        with pytest.raises(ValidationError):
            lab["entry"].enter_value(lab["rec_a"].id, "HDL", "40")

    def test_reenter_updates_same_row(self, db, lab):
        lab["entry"].enter_value(lab["rec_a"].id, "Hemoglobin", "15")
        values = [v for v in ResultValueRepository(db).get_for_result(lab["rec_a"].id) if v.parameter == "Hemoglobin"]
        assert len(values) == 1
        assert values[0].value == "15"


class TestSingleAnalyte:
    def test_approve(self, db, lab):
        rv = ResultValueRepository(db).get_for_result(lab["rec_b"].id)[0]
        approved = lab["verify"].approve_analyte(rv.id)
        assert approved.verify_status is VerifyStatus.APPROVED
        assert approved.verified_at is not None
        assert approved.verified_by == "Dr. Reviewer"

    def test_approve_missing(self, lab):
        with pytest.raises(NotFoundError):
            lab["verify"].approve_analyte("nope")

    def test_reject_with_note(self, db, lab):
        rv = ResultValueRepository(db).get_for_result(lab["rec_b"].id)[0]
        rejected = lab["verify"].reject_analyte(rv.id, note="Sample haemolysed")
        assert rejected.verify_status is VerifyStatus.REJECTED
        assert rejected.verify_note == "Sample haemolysed"
        assert rejected.verified_at is not None

    def test_reject_empty_note_stored_as_null(self, db, lab):
        rv = ResultValueRepository(db).get_for_result(lab["rec_b"].id)[0]
        assert lab["verify"].reject_analyte(rv.id, note="").verify_note is None

    def test_rejected_can_be_approved(self, db, lab):
        rv = ResultValueRepository(db).get_for_result(lab["rec_b"].id)[0]
        lab["verify"].reject_analyte(rv.id, note="recheck")
        assert lab["verify"].approve_analyte(rv.id).verify_status is VerifyStatus.APPROVED

    def test_approved_can_be_rejected(self, db, lab):
        rv = ResultValueRepository(db).get_for_result(lab["rec_b"].id)[0]
        lab["verify"].approve_analyte(rv.id)
        assert lab["verify"].reject_analyte(rv.id).verify_status is VerifyStatus.REJECTED

    def test_bulk_approve_analytes_reports_unknown(self, db, lab):
        ids = [v.id for v in ResultValueRepository(db).get_for_result(lab["rec_b"].id)]
        result = lab["verify"].bulk_approve_analytes(ids + ["ghost"], note="batch")
        assert result.succeeded == ids
        assert [f.id for f in result.failed] == ["ghost"]
        assert not result.ok


class TestApproveAllInPanel:
    def test_approves_entered_values_only(self, db, lab):
        before = _panel(lab["progress"].get_order_progress(lab["order"].id), "CBC")
        assert (before.expected, before.entered, before.approved_count) == (5, 3, 0)
        assert before.status is PanelStatus.IN_PROGRESS

        record = lab["verify"].approve_all_in_panel(lab["rec_a"].id)
        assert record.verification_status is VerificationStatus.VERIFIED
        assert record.verified_by == "Dr. Reviewer"

        after = _panel(lab["progress"].get_order_progress(lab["order"].id), "CBC")
        assert after.entered == 3
        assert after.approved_count == 3
        assert after.pending == 2
        assert after.for_approval == 0
        assert after.status is not PanelStatus.VERIFIED
        assert not after.ready

        # Never-entered analytes were not materialized as approved
        blanks = [v for v in ResultValueRepository(db).get_for_result(lab["rec_a"].id) if not v.is_entered]
        assert len(blanks) == 2
        assert all(v.verify_status is VerifyStatus.PENDING for v in blanks)

    def test_fully_entered_panel_becomes_verified(self, lab):
        lab["verify"].approve_all_in_panel(lab["rec_b"].id)
        panel = _panel(lab["progress"].get_order_progress(lab["order"].id), "Lipid")
        assert panel.status is PanelStatus.VERIFIED
        assert panel.ready

    def test_missing_record(self, lab):
        with pytest.raises(NotFoundError):
            lab["verify"].approve_all_in_panel("nope")

    def test_finalizer_not_called_when_batch_fails(self, db, lab):
        finalizer = Mock()
        svc = VerificationService(db, cache=lab["cache"], finalizer=finalizer)
        with patch.object(
            ResultValueRepository,
            "approve_entered_for_result",
            side_effect=PersistenceError("database is locked"),
        ):
            with pytest.raises(PersistenceError):
                svc.approve_all_in_panel(lab["rec_a"].id)
        finalizer.assert_not_called()

    def test_custom_finalizer_called_after_batch(self, db, lab):
        finalizer = Mock()
        svc = VerificationService(db, cache=lab["cache"], finalizer=finalizer, actor="bot")
        svc.approve_all_in_panel(lab["rec_a"].id)
        finalizer.assert_called_once_with(lab["rec_a"].id, "bot")


class TestBulkApproveSelected:
    def test_all_succeed(self, lab):
        result = lab["verify"].bulk_approve_selected([lab["rec_a"].id, lab["rec_b"].id])
        assert result.ok
        assert result.succeeded == [lab["rec_a"].id, lab["rec_b"].id]
        result.raise_for_failures()

    def test_partial_failure_is_isolated(self, lab):
        rec_a, rec_b = lab["rec_a"], lab["rec_b"]
        original = ResultValueRepository.approve_entered_for_result

        def flaky(self, result_id, actor=None):
            if result_id == rec_b.id:
                raise PersistenceError("disk I/O error")
            return original(self, result_id, actor=actor)

        with patch.object(ResultValueRepository, "approve_entered_for_result", flaky):
            result = lab["verify"].bulk_approve_selected([rec_a.id, rec_b.id])

        assert result.succeeded == [rec_a.id]
        assert [f.id for f in result.failed] == [rec_b.id]
        assert "disk I/O error" in result.failed[0].reason

        progress = lab["progress"].get_order_progress(lab["order"].id)
        assert _panel(progress, "CBC").approved_count == 3
        assert _panel(progress, "Lipid").approved_count == 0

        with pytest.raises(PartialFailure) as exc_info:
            result.raise_for_failures()
        assert exc_info.value.succeeded == [rec_a.id]
        assert exc_info.value.failed[0]["id"] == rec_b.id

    def test_unknown_id_fails_alone(self, lab):
        result = lab["verify"].bulk_approve_selected(["ghost", lab["rec_b"].id])
        assert result.succeeded == [lab["rec_b"].id]
        assert result.failed[0].id == "ghost"

    def test_runs_on_worker_threads(self, db, lab):
        seen = set()

        def finalizer(result_id, actor):
            seen.add(threading.current_thread().name)

        svc = VerificationService(db, cache=lab["cache"], finalizer=finalizer, max_workers=2)
        svc.bulk_approve_selected([lab["rec_a"].id, lab["rec_b"].id])
        assert seen
        assert threading.current_thread().name not in seen

    def test_empty_input(self, lab):
        result = lab["verify"].bulk_approve_selected([])
        assert result.succeeded == [] and result.failed == []


class TestVerificationStats:
    def test_counts(self, db, lab):
        lab["entry"].enter_value(lab["rec_a"].id, "MCV", "60", flag="C")
        stats = lab["verify"].get_verification_stats()
        assert stats.total == 2
        assert stats.pending == 2
        assert stats.flagged == 2
        assert stats.critical == 1

    def test_verified_records_drop_out(self, lab):
        lab["verify"].approve_all_in_panel(lab["rec_b"].id)
        stats = lab["verify"].get_verification_stats()
        assert stats.total == 1
        assert stats.flagged == 0

    def test_limited_to_ids(self, lab):
        stats = lab["verify"].get_verification_stats([lab["rec_b"].id])
        assert stats.total == 1
        assert stats.flagged == 1
