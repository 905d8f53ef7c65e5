"""Order model, lifecycle statuses and repository."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import field_validator

from labdesk.models.base import BaseRepository, LabModel, parse_timestamp, placeholders


class OrderStatus(str, Enum):
    """Order lifecycle, in workflow order."""

    ORDER_CREATED = "Order Created"
    SAMPLE_COLLECTION = "Sample Collection"
    IN_PROGRESS = "In Progress"
    PENDING_APPROVAL = "Pending Approval"
    COMPLETED = "Completed"
    DELIVERED = "Delivered"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        """Resolve a status name, tolerating the variants older screens wrote."""
        if isinstance(value, OrderStatus):
            return value
        key = (value or "").strip().lower().replace("_", " ")
        key = _STATUS_SYNONYMS.get(key, key)
        for status in cls:
            if status.value.lower() == key:
                return status
        raise ValueError(f"Unknown order status: {value!r}")


_STATUS_ORDER = list(OrderStatus)

_STATUS_SYNONYMS = {
    "sample collected": "sample collection",
    "samplecollection": "sample collection",
    "in process": "in progress",
    "pending collection": "order created",
}

# Statuses counted as "early" by the pending KPI bucket
EARLY_STATUSES = frozenset(
    {OrderStatus.ORDER_CREATED, OrderStatus.SAMPLE_COLLECTION, OrderStatus.IN_PROGRESS}
)
CLOSED_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.DELIVERED})

PRIORITIES = ("Normal", "Urgent", "STAT")


class Order(LabModel):
    """A patient test request."""

    patient_name: str = ""
    patient_id: str = ""
    status: OrderStatus = OrderStatus.ORDER_CREATED
    priority: str = "Normal"  # Normal, Urgent, STAT
    order_date: str = ""
    expected_date: str | None = None
    sample_collected_at: str | None = None
    sample_collected_by: str | None = None
    status_updated_at: str | None = None
    status_updated_by: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> OrderStatus:
        return OrderStatus.parse(v)

    @property
    def is_sample_collected(self) -> bool:
        return bool(self.sample_collected_at)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def is_overdue(self, today: date | None = None) -> bool:
        if not self.expected_date or self.is_closed:
            return False
        today = today or date.today()
        try:
            return date.fromisoformat(self.expected_date[:10]) < today
        except ValueError:
            return False

    def hours_since_order(self, now: datetime) -> float:
        """Elapsed hours from order_date to ``now``."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (now - parse_timestamp(self.order_date)).total_seconds() / 3600


class OrderRepository(BaseRepository):
    table: ClassVar[str] = "orders"
    model_class: ClassVar[type[LabModel]] = Order  # type: ignore[assignment]

    def list_orders(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        """List orders, newest order_date first, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if date_from:
            clauses.append("substr(order_date, 1, 10) >= ?")
            params.append(date_from[:10])
        if date_to:
            clauses.append("substr(order_date, 1, 10) <= ?")
            params.append(date_to[:10])
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        sql = "SELECT * FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY order_date DESC, created_at DESC"
        return [Order.from_row(r) for r in self.db.fetchall(sql, tuple(params))]

    def get_many(self, order_ids: list[str]) -> list[Order]:
        if not order_ids:
            return []
        rows = self.db.fetchall(
            f"SELECT * FROM orders WHERE id IN ({placeholders(order_ids)}) ORDER BY order_date DESC",
            tuple(order_ids),
        )
        return [Order.from_row(r) for r in rows]
