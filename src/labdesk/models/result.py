"""Result records, result values and their repositories."""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from pydantic import field_validator

from labdesk.models.base import BaseRepository, LabModel, now_iso, placeholders


class Flag(str, Enum):
    """Closed set of abnormality flags for a result value."""

    NORMAL = "Normal"
    HIGH = "High"
    LOW = "Low"
    CRITICAL = "Critical"


_FLAG_ALIASES = {
    "n": Flag.NORMAL,
    "normal": Flag.NORMAL,
    "h": Flag.HIGH,
    "hh": Flag.HIGH,
    "high": Flag.HIGH,
    "l": Flag.LOW,
    "ll": Flag.LOW,
    "low": Flag.LOW,
    # A and C both mark critical values on printed reports
    "a": Flag.CRITICAL,
    "abnormal": Flag.CRITICAL,
    "c": Flag.CRITICAL,
    "critical": Flag.CRITICAL,
}


def normalize_flag(raw: "str | Flag | None") -> Flag | None:
    """Fold the loose flag spellings ('H', 'High', 'C', ...) into a Flag.

    Empty input means "no flag". Unknown spellings raise ValueError.
    """
    if raw is None or isinstance(raw, Flag):
        return raw
    key = raw.strip().lower()
    if not key:
        return None
    try:
        return _FLAG_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown result flag: {raw!r}") from None


class VerifyStatus(str, Enum):
    """Per-analyte verification state."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationStatus(str, Enum):
    """Overall verification state of a result record."""

    PENDING_VERIFICATION = "pending_verification"
    NEEDS_CLARIFICATION = "needs_clarification"
    VERIFIED = "verified"
    REJECTED = "rejected"


AWAITING_APPROVAL = frozenset(
    {VerificationStatus.PENDING_VERIFICATION, VerificationStatus.NEEDS_CLARIFICATION}
)


class ResultRecord(LabModel):
    """A result-entry pass for one panel of one order."""

    order_id: str
    order_test_group_id: str | None = None
    order_test_id: str | None = None
    test_group_id: str | None = None
    test_name: str = ""
    verification_status: VerificationStatus = VerificationStatus.PENDING_VERIFICATION
    entered_at: str | None = None
    verified_at: str | None = None
    verified_by: str | None = None
    review_comment: str | None = None

    @property
    def link_id(self) -> str | None:
        return self.order_test_group_id or self.order_test_id


class ResultValue(LabModel):
    """The entered value for one analyte within a result record."""

    result_id: str
    analyte_id: str
    parameter: str = ""
    value: str | None = None
    unit: str = ""
    reference_range: str = ""
    flag: Flag | None = None
    verify_status: VerifyStatus = VerifyStatus.PENDING
    verify_note: str | None = None
    verified_at: str | None = None
    verified_by: str | None = None

    @field_validator("flag", mode="before")
    @classmethod
    def _normalize_flag(cls, v: Any) -> Flag | None:
        return normalize_flag(v)

    @field_validator("verify_status", mode="before")
    @classmethod
    def _null_is_pending(cls, v: Any) -> Any:
        # Rows written before verification existed carry NULL
        return v or VerifyStatus.PENDING

    @property
    def is_entered(self) -> bool:
        return self.value is not None and self.value.strip() != ""

    @property
    def is_approved(self) -> bool:
        return self.verify_status == VerifyStatus.APPROVED

    @property
    def is_flagged(self) -> bool:
        return self.flag is not None and self.flag != Flag.NORMAL


class ResultRecordRepository(BaseRepository):
    table: ClassVar[str] = "results"
    model_class: ClassVar[type[LabModel]] = ResultRecord  # type: ignore[assignment]

    def get_for_order(self, order_id: str) -> list[ResultRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM results WHERE order_id = ? ORDER BY created_at, id",
            (order_id,),
        )
        return [ResultRecord.from_row(r) for r in rows]  # type: ignore[misc]

    def find_for_link(self, link_id: str) -> ResultRecord | None:
        """Find the record entered against a current or legacy linkage id."""
        row = self.db.fetchone(
            "SELECT * FROM results WHERE order_test_group_id = ? OR order_test_id = ? "
            "ORDER BY created_at LIMIT 1",
            (link_id, link_id),
        )
        return ResultRecord.from_row(row) if row else None  # type: ignore[return-value]

    def statuses_by_order(self, order_ids: list[str]) -> dict[str, list[VerificationStatus]]:
        """Verification statuses of every record, grouped by order id."""
        statuses: dict[str, list[VerificationStatus]] = {oid: [] for oid in order_ids}
        if not order_ids:
            return statuses
        rows = self.db.fetchall(
            f"SELECT order_id, verification_status FROM results WHERE order_id IN ({placeholders(order_ids)})",
            tuple(order_ids),
        )
        for r in rows:
            statuses.setdefault(r["order_id"], []).append(VerificationStatus(r["verification_status"]))
        return statuses

    def list_awaiting(self, record_ids: list[str] | None = None) -> list[ResultRecord]:
        """Records still waiting on a verifier, optionally limited to some ids."""
        statuses = [s.value for s in AWAITING_APPROVAL]
        sql = f"SELECT * FROM results WHERE verification_status IN ({placeholders(statuses)})"
        params: list[Any] = list(statuses)
        if record_ids is not None:
            if not record_ids:
                return []
            sql += f" AND id IN ({placeholders(record_ids)})"
            params.extend(record_ids)
        sql += " ORDER BY order_id, test_name, created_at DESC"
        return [ResultRecord.from_row(r) for r in self.db.fetchall(sql, tuple(params))]  # type: ignore[misc]

    def finalize(self, record_id: str, actor: str | None = None) -> ResultRecord:
        """Seal a record as verified."""
        return self.update(  # type: ignore[return-value]
            record_id,
            verification_status=VerificationStatus.VERIFIED.value,
            verified_at=now_iso(),
            verified_by=actor,
        )


class ResultValueRepository(BaseRepository):
    table: ClassVar[str] = "result_values"
    model_class: ClassVar[type[LabModel]] = ResultValue  # type: ignore[assignment]

    def get_for_result(self, result_id: str) -> list[ResultValue]:
        rows = self.db.fetchall(
            "SELECT * FROM result_values WHERE result_id = ? ORDER BY parameter",
            (result_id,),
        )
        return [ResultValue.from_row(r) for r in rows]  # type: ignore[misc]

    def get_for_order(self, order_id: str) -> list[ResultValue]:
        rows = self.db.fetchall(
            "SELECT rv.* FROM result_values rv "
            "JOIN results r ON rv.result_id = r.id "
            "WHERE r.order_id = ? ORDER BY rv.created_at, rv.id",
            (order_id,),
        )
        return [ResultValue.from_row(r) for r in rows]  # type: ignore[misc]

    def get_for_results(self, result_ids: list[str]) -> list[ResultValue]:
        if not result_ids:
            return []
        rows = self.db.fetchall(
            f"SELECT * FROM result_values WHERE result_id IN ({placeholders(result_ids)}) ORDER BY parameter",
            tuple(result_ids),
        )
        return [ResultValue.from_row(r) for r in rows]  # type: ignore[misc]

    def find(self, result_id: str, analyte_id: str) -> ResultValue | None:
        row = self.db.fetchone(
            "SELECT * FROM result_values WHERE result_id = ? AND analyte_id = ? "
            "ORDER BY created_at LIMIT 1",
            (result_id, analyte_id),
        )
        return ResultValue.from_row(row) if row else None  # type: ignore[return-value]

    def set_verify_status(
        self,
        value_ids: list[str],
        status: VerifyStatus,
        note: str | None = None,
        actor: str | None = None,
    ) -> list[str]:
        """Batch-set verify_status on the given ids in one statement.

        Returns the ids that exist (and were therefore updated).
        """
        if not value_ids:
            return []
        found = [
            r["id"]
            for r in self.db.fetchall(
                f"SELECT id FROM result_values WHERE id IN ({placeholders(value_ids)})",
                tuple(value_ids),
            )
        ]
        if not found:
            return []
        stamp = now_iso()
        self.db.execute(
            "UPDATE result_values SET verify_status = ?, verify_note = ?, verified_at = ?, "
            f"verified_by = ?, updated_at = ? WHERE id IN ({placeholders(found)})",
            (status.value, note, stamp, actor, stamp, *found),
        )
        self.db.commit()
        return found

    def approve_entered_for_result(self, result_id: str, actor: str | None = None) -> int:
        """Approve every entered value of one record; returns the row count."""
        stamp = now_iso()
        cursor = self.db.execute(
            "UPDATE result_values SET verify_status = ?, verified_at = ?, verified_by = ?, updated_at = ? "
            "WHERE result_id = ? AND value IS NOT NULL AND TRIM(value) != ''",
            (VerifyStatus.APPROVED.value, stamp, actor, stamp, result_id),
        )
        self.db.commit()
        return cursor.rowcount

    def value_count_by_order(self, order_ids: list[str]) -> dict[str, int]:
        """Number of result value rows per order, empty pre-seeded rows included."""
        counts = {oid: 0 for oid in order_ids}
        if not order_ids:
            return counts
        rows = self.db.fetchall(
            "SELECT r.order_id AS order_id, COUNT(rv.id) AS cnt FROM results r "
            "JOIN result_values rv ON rv.result_id = r.id "
            f"WHERE r.order_id IN ({placeholders(order_ids)}) GROUP BY r.order_id",
            tuple(order_ids),
        )
        for r in rows:
            counts[r["order_id"]] = r["cnt"]
        return counts
