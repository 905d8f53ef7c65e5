"""Result verification, per analyte and per panel.

Verify status moves pending -> approved, pending -> rejected, and also
rejected -> approved and approved -> rejected: neither direction is guarded.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

from pydantic import BaseModel, Field

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import PartialFailure
from labdesk.models.result import (
    Flag,
    ResultRecord,
    ResultRecordRepository,
    ResultValue,
    ResultValueRepository,
    VerificationStatus,
    VerifyStatus,
)
from labdesk.services.progress_service import ProgressCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class PanelFinalizer(Protocol):
    """Seals a result record once all its entered values are approved."""

    def __call__(self, result_id: str, actor: str | None) -> Any: ...


class StoreFinalizer:
    """Default finalizer: mark the record verified in the same database."""

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db
        self.records = ResultRecordRepository(db)

    def __call__(self, result_id: str, actor: str | None) -> ResultRecord:
        with self.db.transaction():
            return self.records.finalize(result_id, actor)


class FailedItem(BaseModel):
    id: str
    reason: str


class BulkApprovalResult(BaseModel):
    """Outcome of a fan-out approval; successes are never rolled back."""

    succeeded: list[str] = Field(default_factory=list)
    failed: list[FailedItem] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialFailure(self.succeeded, [f.model_dump() for f in self.failed])


class VerificationStats(BaseModel):
    total: int = 0
    pending: int = 0
    flagged: int = 0
    critical: int = 0


class VerificationService:
    """Approve and reject entered values; approve whole panels."""

    def __init__(
        self,
        db: DatabaseConnection,
        cache: ProgressCache | None = None,
        finalizer: PanelFinalizer | None = None,
        actor: str | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.db = db
        self.cache = cache if cache is not None else ProgressCache()
        self.finalizer = finalizer if finalizer is not None else StoreFinalizer(db)
        self.actor = actor
        self.max_workers = max(1, max_workers)
        self.records = ResultRecordRepository(db)
        self.values = ResultValueRepository(db)

    def _order_id_for_value(self, value: ResultValue) -> str:
        record: ResultRecord = self.records.get(value.result_id)  # type: ignore[assignment]
        return record.order_id

    # ── Single analyte ───────────────────────────────────────────

    def approve_analyte(self, result_value_id: str) -> ResultValue:
        """Approve one value. No precondition beyond the row existing."""
        return self._set_status(result_value_id, VerifyStatus.APPROVED, note=None)

    def reject_analyte(self, result_value_id: str, note: str | None = None) -> ResultValue:
        """Reject one value; an empty note is stored as NULL."""
        return self._set_status(result_value_id, VerifyStatus.REJECTED, note=note or None)

    def _set_status(self, result_value_id: str, status: VerifyStatus, note: str | None) -> ResultValue:
        value: ResultValue = self.values.get(result_value_id)  # type: ignore[assignment]
        order_id = self._order_id_for_value(value)
        with self.db.transaction():
            self.values.set_verify_status([result_value_id], status, note=note, actor=self.actor)
        self.cache.invalidate(order_id)
        logger.info("Result value %s %s", result_value_id, status.value)
        return self.values.get(result_value_id)  # type: ignore[return-value]

    def bulk_approve_analytes(self, result_value_ids: list[str], note: str | None = None) -> BulkApprovalResult:
        """Approve many values in one batched update.

        Ids that do not exist are reported as failed; the rest are approved.
        """
        ids = list(dict.fromkeys(result_value_ids))
        if not ids:
            return BulkApprovalResult()
        with self.db.transaction():
            found = self.values.set_verify_status(ids, VerifyStatus.APPROVED, note=note, actor=self.actor)
        found_set = set(found)
        for order_id in {self._order_id_for_value(self.values.get(vid)) for vid in found}:  # type: ignore[arg-type]
            self.cache.invalidate(order_id)
        return BulkApprovalResult(
            succeeded=[i for i in ids if i in found_set],
            failed=[FailedItem(id=i, reason="Result value not found") for i in ids if i not in found_set],
        )

    # ── Whole panel ──────────────────────────────────────────────

    def approve_all_in_panel(self, result_record_id: str) -> ResultRecord:
        """Approve every entered value of a record, then finalize the panel.

        Analytes that were never entered stay unentered, so a panel can be
        sealed with entered < expected. When the batch update fails the
        finalizer is not called.
        """
        record: ResultRecord = self.records.get(result_record_id)  # type: ignore[assignment]
        try:
            with self.db.transaction():
                approved = self.values.approve_entered_for_result(result_record_id, actor=self.actor)
            self.finalizer(result_record_id, self.actor)
        finally:
            self.cache.invalidate(record.order_id)
        logger.info("Approved %d value(s) and finalized result %s", approved, result_record_id)
        return self.records.get(result_record_id)  # type: ignore[return-value]

    def bulk_approve_selected(self, result_record_ids: list[str]) -> BulkApprovalResult:
        """Run approve_all_in_panel for each id concurrently.

        Each id succeeds or fails on its own; the result lists both, in the
        order the ids were given.
        """
        ids = list(dict.fromkeys(result_record_ids))
        if not ids:
            return BulkApprovalResult()

        outcomes: dict[str, str | None] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ids))) as pool:
            futures = {rid: pool.submit(self._approve_one, rid) for rid in ids}
            for rid, future in futures.items():
                outcomes[rid] = future.result()

        result = BulkApprovalResult(
            succeeded=[rid for rid in ids if outcomes[rid] is None],
            failed=[FailedItem(id=rid, reason=outcomes[rid] or "") for rid in ids if outcomes[rid] is not None],
        )
        if result.failed:
            logger.warning("Bulk approval: %d succeeded, %d failed", len(result.succeeded), len(result.failed))
        return result

    def _approve_one(self, result_record_id: str) -> str | None:
        """Return None on success, or the failure reason."""
        try:
            self.approve_all_in_panel(result_record_id)
        except Exception as e:
            logger.debug("Approval of %s failed", result_record_id, exc_info=True)
            return str(e) or e.__class__.__name__
        return None

    # ── Console stats ────────────────────────────────────────────

    def get_verification_stats(self, record_ids: list[str] | None = None) -> VerificationStats:
        """Counts over records awaiting verification.

        ``flagged`` counts records with any High/Low/Critical value,
        ``critical`` those with a Critical value.
        """
        records = self.records.list_awaiting(record_ids)
        values = self.values.get_for_results([r.id for r in records])
        flagged_ids = {v.result_id for v in values if v.is_flagged}
        critical_ids = {v.result_id for v in values if v.flag == Flag.CRITICAL}
        return VerificationStats(
            total=len(records),
            pending=sum(1 for r in records if r.verification_status == VerificationStatus.PENDING_VERIFICATION),
            flagged=len(flagged_ids),
            critical=len(critical_ids),
        )

