"""Order progress — per-panel and per-order counts derived from raw result rows.

Nothing here is stored. ``aggregate_progress`` recomputes the whole picture
for one order from its order items, result records and result values; the
service caches that output per order id and mutating services drop the entry
for the order they touched.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum

from pydantic import BaseModel

from labdesk.core.database import DatabaseConnection
from labdesk.models.order import OrderRepository
from labdesk.models.panel import (
    AnalyteRepository,
    OrderTestGroupRepository,
    OrderTestRepository,
    TestGroupRepository,
)
from labdesk.models.result import (
    ResultRecord,
    ResultRecordRepository,
    ResultValue,
    ResultValueRepository,
)
from labdesk.services.order_items import OrderItem, fold_order_items

logger = logging.getLogger(__name__)


class PanelStatus(str, Enum):
    NOT_STARTED = "Not started"
    IN_PROGRESS = "In progress"
    COMPLETE = "Complete"
    VERIFIED = "Verified"


def percent(part: int, whole: int) -> int:
    """Whole-number percentage; 0 when there is nothing to measure against."""
    if whole <= 0:
        return 0
    return round(part * 100 / whole)


def panel_status(expected: int, entered: int, approved: int) -> PanelStatus:
    if expected > 0 and approved == expected:
        return PanelStatus.VERIFIED
    if entered == 0:
        return PanelStatus.NOT_STARTED
    if entered < expected:
        return PanelStatus.IN_PROGRESS
    return PanelStatus.COMPLETE


class PanelProgress(BaseModel):
    test_group_id: str
    name: str
    link_id: str
    result_id: str | None = None
    expected: int
    entered: int
    approved_count: int
    status: PanelStatus

    @property
    def pending(self) -> int:
        return self.expected - self.entered

    @property
    def for_approval(self) -> int:
        return self.entered - self.approved_count

    @property
    def ready(self) -> bool:
        return self.expected > 0 and self.approved_count == self.expected

    @property
    def percent_entered(self) -> int:
        return percent(self.entered, self.expected)

    @property
    def percent_approved(self) -> int:
        return percent(self.approved_count, self.expected)


class OrderProgress(BaseModel):
    order_id: str
    panels: list[PanelProgress]
    expected_total: int
    entered_total: int
    approved_total: int
    pending_analytes: int
    for_approval_analytes: int

    @property
    def percent_complete(self) -> int:
        return percent(self.approved_total, self.expected_total)

    @property
    def all_verified(self) -> bool:
        return self.expected_total > 0 and self.approved_total == self.expected_total


def aggregate_progress(
    order_id: str,
    items: list[OrderItem],
    records: list[ResultRecord],
    values: list[ResultValue],
) -> OrderProgress:
    """Compute panel and order counts for one order.

    Values are matched to analytes by (linkage id, analyte id), trying the
    item's current linkage before its legacy one. Duplicate or stale rows for
    the same key count once, and counts are clamped so that
    ``0 <= approved <= entered <= expected`` always holds.
    """
    record_by_id = {r.id: r for r in records}
    records_by_link: dict[str, list[ResultRecord]] = {}
    for rec in records:
        for link in (rec.order_test_group_id, rec.order_test_id):
            if link:
                records_by_link.setdefault(link, []).append(rec)

    # (link id, analyte id) -> [entered?, approved?]
    seen: dict[tuple[str, str], list[bool]] = {}
    for v in values:
        rec = record_by_id.get(v.result_id)
        if rec is None:
            continue
        for link in (rec.order_test_group_id, rec.order_test_id):
            if not link:
                continue
            state = seen.setdefault((link, v.analyte_id), [False, False])
            if v.is_entered:
                state[0] = True
                if v.is_approved:
                    state[1] = True

    panels: list[PanelProgress] = []
    for item in items:
        entered = approved = 0
        for analyte in item.analytes:
            state = None
            for link in item.lookup_ids:
                state = seen.get((link, analyte.id))
                if state is not None and state[0]:
                    break
            if state and state[0]:
                entered += 1
                if state[1]:
                    approved += 1

        expected = item.expected
        entered = max(0, min(entered, expected))
        approved = max(0, min(approved, entered))

        result_id = None
        for link in item.lookup_ids:
            if records_by_link.get(link):
                result_id = records_by_link[link][0].id
                break

        panels.append(
            PanelProgress(
                test_group_id=item.test_group_id,
                name=item.name,
                link_id=item.link_id,
                result_id=result_id,
                expected=expected,
                entered=entered,
                approved_count=approved,
                status=panel_status(expected, entered, approved),
            )
        )

    expected_total = sum(p.expected for p in panels)
    entered_total = sum(p.entered for p in panels)
    approved_total = sum(p.approved_count for p in panels)
    return OrderProgress(
        order_id=order_id,
        panels=panels,
        expected_total=expected_total,
        entered_total=entered_total,
        approved_total=approved_total,
        pending_analytes=expected_total - entered_total,
        for_approval_analytes=entered_total - approved_total,
    )


class ProgressCache:
    """Per-order cache of aggregated progress, invalidated by order id.

    Every invalidation bumps the order's generation. A caller reads the
    generation before computing and hands it back to ``put``; if a mutation
    landed in between, the stale result is dropped instead of stored.
    """

    def __init__(self) -> None:
        self._entries: dict[str, OrderProgress] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, order_id: str) -> OrderProgress | None:
        with self._lock:
            return self._entries.get(order_id)

    def generation(self, order_id: str) -> int:
        with self._lock:
            return self._generations.get(order_id, 0)

    def put(self, progress: OrderProgress, generation: int | None = None) -> bool:
        """Store progress; returns False when ``generation`` is out of date."""
        with self._lock:
            if generation is not None and self._generations.get(progress.order_id, 0) != generation:
                logger.debug("Dropped stale progress for order %s", progress.order_id)
                return False
            self._entries[progress.order_id] = progress
            return True

    def invalidate(self, order_id: str) -> None:
        with self._lock:
            self._generations[order_id] = self._generations.get(order_id, 0) + 1
            if self._entries.pop(order_id, None) is not None:
                logger.debug("Invalidated progress for order %s", order_id)

    def __contains__(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ProgressService:
    """Loads raw rows for an order and aggregates them."""

    def __init__(self, db: DatabaseConnection, cache: ProgressCache | None = None) -> None:
        self.db = db
        self.cache = cache if cache is not None else ProgressCache()
        self.orders = OrderRepository(db)
        self.groups = TestGroupRepository(db)
        self.analytes = AnalyteRepository(db)
        self.current_links = OrderTestGroupRepository(db)
        self.legacy_links = OrderTestRepository(db)
        self.records = ResultRecordRepository(db)
        self.values = ResultValueRepository(db)

    def get_order_items(self, order_id: str) -> list[OrderItem]:
        current = self.current_links.get_for_order(order_id)
        legacy = self.legacy_links.get_for_order(order_id)
        group_ids = list(
            dict.fromkeys(
                [c.test_group_id for c in current] + [lg.test_group_id for lg in legacy if lg.test_group_id]
            )
        )
        groups = self.groups.get_many(group_ids)
        analytes = self.analytes.get_for_groups(list(groups))
        return fold_order_items(current, legacy, groups, analytes)

    def get_order_progress(self, order_id: str) -> OrderProgress:
        """Return progress for an order, from cache when nothing has changed since."""
        cached = self.cache.get(order_id)
        if cached is not None:
            return cached
        generation = self.cache.generation(order_id)
        progress = self.compute(order_id)
        self.cache.put(progress, generation)
        return progress

    def compute(self, order_id: str) -> OrderProgress:
        """Recompute from storage, bypassing the cache."""
        self.orders.get(order_id)  # NotFoundError for unknown orders
        items = self.get_order_items(order_id)
        records = self.records.get_for_order(order_id)
        values = self.values.get_for_order(order_id)
        return aggregate_progress(order_id, items, records, values)
