"""KPI buckets and turnaround time over an order set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import LabDeskError, ValidationError
from labdesk.models.order import EARLY_STATUSES, Order, OrderRepository, OrderStatus
from labdesk.models.panel import OrderTestGroupRepository
from labdesk.models.result import (
    AWAITING_APPROVAL,
    ResultRecordRepository,
    ResultValueRepository,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class Bucket(str, Enum):
    APPROVED = "approved"
    FOR_APPROVAL = "for_approval"
    PENDING = "pending"
    OVERDUE = "overdue"
    IN_PROCESS = "in_process"


@dataclass
class OrderSnapshot:
    """An order plus the result facts the buckets are decided on."""

    order: Order
    verification_statuses: list[VerificationStatus] = field(default_factory=list)
    value_count: int = 0


class OrderBuckets(BaseModel):
    approved: list[str] = Field(default_factory=list)
    for_approval: list[str] = Field(default_factory=list)
    pending: list[str] = Field(default_factory=list)
    overdue: list[str] = Field(default_factory=list)
    in_process: list[str] = Field(default_factory=list)

    def get(self, bucket: "Bucket | str") -> list[str]:
        return getattr(self, Bucket(bucket).value)

    def counts(self) -> dict[str, int]:
        return {b.value: len(self.get(b)) for b in Bucket}


class KpiSummary(BaseModel):
    total_orders: int
    counts: dict[str, int]
    mean_tat_hours: float


def _in_range(order: Order, date_range: tuple[str | None, str | None] | None) -> bool:
    if not date_range:
        return True
    start, end = date_range
    day = order.order_date[:10]
    if start and day < start[:10]:
        return False
    if end and day > end[:10]:
        return False
    return True


def classify_orders(
    snapshots: list[OrderSnapshot],
    date_range: tuple[str | None, str | None] | None = None,
    today: date | None = None,
) -> OrderBuckets:
    """Sort orders into the five reporting buckets.

    Buckets are decided independently, so one order may sit in several.
    ``date_range`` is an inclusive ``(from, to)`` pair matched against the
    order date; either end may be ``None``.
    """
    today = today or date.today()
    buckets = OrderBuckets()
    for snap in snapshots:
        order = snap.order
        if not _in_range(order, date_range):
            continue
        statuses = set(snap.verification_statuses)
        if VerificationStatus.VERIFIED in statuses:
            buckets.approved.append(order.id)
        if statuses & AWAITING_APPROVAL:
            buckets.for_approval.append(order.id)
        if snap.value_count == 0 and order.status in EARLY_STATUSES:
            buckets.pending.append(order.id)
        if order.is_overdue(today):
            buckets.overdue.append(order.id)
        if order.status == OrderStatus.IN_PROGRESS:
            buckets.in_process.append(order.id)
    return buckets


def mean_tat_hours(orders: list[Order], now: datetime | None = None) -> float:
    """Plain mean of hours since order date; 0.0 for no orders."""
    if not orders:
        return 0.0
    now = now or datetime.now(timezone.utc)
    return sum(o.hours_since_order(now) for o in orders) / len(orders)


class KpiService:
    """Loads order snapshots and reports on them."""

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db
        self.orders = OrderRepository(db)
        self.records = ResultRecordRepository(db)
        self.values = ResultValueRepository(db)
        self.links = OrderTestGroupRepository(db)

    def snapshots(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[OrderSnapshot]:
        orders = self.orders.list_orders(date_from=date_from, date_to=date_to)
        ids = [o.id for o in orders]
        statuses = self.records.statuses_by_order(ids)
        counts = self.values.value_count_by_order(ids)
        return [
            OrderSnapshot(
                order=o,
                verification_statuses=statuses.get(o.id, []),
                value_count=counts.get(o.id, 0),
            )
            for o in orders
        ]

    def classify(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        today: date | None = None,
    ) -> OrderBuckets:
        snaps = self.snapshots(date_from, date_to)
        return classify_orders(snaps, (date_from, date_to), today=today)

    def summary(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> KpiSummary:
        snaps = self.snapshots(date_from, date_to)
        buckets = classify_orders(snaps, (date_from, date_to), today=today)
        orders = [s.order for s in snaps]
        return KpiSummary(
            total_orders=len(orders),
            counts=buckets.counts(),
            mean_tat_hours=round(mean_tat_hours(orders, now), 2),
        )

    def bucket_rows(
        self,
        bucket: "Bucket | str",
        date_from: str | None = None,
        date_to: str | None = None,
        today: date | None = None,
    ) -> list[dict[str, Any]]:
        """Orders in one bucket, with their panel names when available."""
        try:
            kind = Bucket(bucket)
        except ValueError:
            raise ValidationError(
                f"Unknown bucket '{bucket}'. Choose from: {', '.join(b.value for b in Bucket)}"
            ) from None
        snaps = self.snapshots(date_from, date_to)
        ids = classify_orders(snaps, (date_from, date_to), today=today).get(kind)
        by_id = {s.order.id: s.order for s in snaps}

        try:
            names = self.links.names_by_order(ids)
        except LabDeskError as e:
            logger.warning("Could not load panel names for %d orders: %s", len(ids), e)
            names = {}

        rows = []
        for oid in ids:
            order = by_id[oid]
            rows.append(
                {
                    "id": order.id,
                    "patient_name": order.patient_name,
                    "status": order.status.value,
                    "priority": order.priority,
                    "order_date": order.order_date,
                    "expected_date": order.expected_date,
                    "panels": names.get(oid, []),
                }
            )
        return rows
