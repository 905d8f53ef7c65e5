"""Order intake and panel catalog."""

from __future__ import annotations

import logging
from typing import Any

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import NotFoundError, ValidationError
from labdesk.models.base import now_iso, parse_timestamp
from labdesk.models.order import PRIORITIES, Order, OrderRepository, OrderStatus
from labdesk.models.panel import (
    Analyte,
    AnalyteRepository,
    OrderTest,
    OrderTestGroup,
    OrderTestGroupRepository,
    OrderTestRepository,
    TestGroup,
    TestGroupAnalyteRepository,
    TestGroupRepository,
)

logger = logging.getLogger(__name__)


def _check_date(value: str | None, label: str) -> None:
    if not value:
        return
    try:
        parse_timestamp(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: '{value}'. Use YYYY-MM-DD.") from None


class PanelService:
    """Panels and the analytes they measure."""

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db
        self.groups = TestGroupRepository(db)
        self.analytes = AnalyteRepository(db)
        self.members = TestGroupAnalyteRepository(db)

    def add_panel(
        self,
        name: str,
        analytes: list[dict[str, Any]] | None = None,
        code: str = "",
        category: str = "",
        department: str = "",
        tat_hours: int | None = None,
    ) -> TestGroup:
        """Create a panel; analytes are matched by name and created when new.

        Each analyte entry is a dict with ``name`` and optional ``unit`` and
        ``reference_range``.
        """
        if not name or not name.strip():
            raise ValidationError("Panel name is required.")
        if self.groups.find_by_name(name) is not None:
            raise ValidationError(f"Panel '{name}' already exists.")
        if tat_hours is not None and tat_hours < 0:
            raise ValidationError("TAT hours cannot be negative.")

        group = TestGroup(
            name=name.strip(),
            code=code,
            category=category,
            department=department,
            tat_hours=tat_hours,
        )
        with self.db.transaction():
            self.groups.insert(group)
            for fields in analytes or []:
                analyte = self.get_or_create_analyte(**fields)
                self.members.link(group.id, analyte.id)
        logger.info("Added panel %s with %d analytes", group.name, len(analytes or []))
        return group

    def get_or_create_analyte(self, name: str, unit: str = "", reference_range: str = "") -> Analyte:
        if not name or not name.strip():
            raise ValidationError("Analyte name is required.")
        existing = self.analytes.find_by_name(name.strip())
        if existing is not None:
            return existing
        analyte = Analyte(name=name.strip(), unit=unit, reference_range=reference_range)
        self.analytes.insert(analyte)
        return analyte

    def resolve(self, ref: str) -> TestGroup:
        """Find a panel by id, name or code."""
        group = self.groups.find_by_name(ref)
        if group is not None:
            return group
        return self.groups.get(ref)  # type: ignore[return-value]

    def list_panels(self) -> list[dict[str, Any]]:
        groups = self.groups.list_all()
        by_group = self.analytes.get_for_groups([g.id for g in groups])
        return [
            {**g.model_dump(), "analytes": [a.name for a in by_group.get(g.id, [])]}
            for g in groups
        ]


class OrderService:
    """Business logic for creating and reading orders."""

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db
        self.orders = OrderRepository(db)
        self.links = OrderTestGroupRepository(db)
        self.legacy_links = OrderTestRepository(db)
        self.panels = PanelService(db)

    def add_order(
        self,
        patient_name: str,
        panels: list[str] | None = None,
        patient_id: str = "",
        priority: str = "Normal",
        order_date: str | None = None,
        expected_date: str | None = None,
        legacy: bool = False,
    ) -> Order:
        """Create an order and link the named panels.

        ``legacy`` links panels through the old ``order_tests`` table, the
        shape older orders still carry.
        """
        if not patient_name or not patient_name.strip():
            raise ValidationError("Patient name is required.")
        if priority not in PRIORITIES:
            raise ValidationError(f"Priority must be one of: {', '.join(PRIORITIES)}")
        _check_date(order_date, "order date")
        _check_date(expected_date, "expected date")
        if order_date and expected_date and expected_date[:10] < order_date[:10]:
            raise ValidationError("Expected date cannot be before the order date.")

        groups = [self.panels.resolve(ref) for ref in panels or []]
        order = Order(
            patient_name=patient_name.strip(),
            patient_id=patient_id,
            priority=priority,
            order_date=order_date or now_iso(),
            expected_date=expected_date,
        )
        with self.db.transaction():
            self.orders.insert(order)
            for group in groups:
                self._link(order.id, group, legacy)
        logger.info("Created order %s for %s (%d panels)", order.id, order.patient_name, len(groups))
        return order

    def link_panel(self, order_id: str, panel_ref: str, legacy: bool = False) -> TestGroup:
        if not self.orders.exists(order_id):
            raise NotFoundError(f"Order not found: {order_id}")
        group = self.panels.resolve(panel_ref)
        self._link(order_id, group, legacy)
        return group

    def _link(self, order_id: str, group: TestGroup, legacy: bool) -> None:
        if legacy:
            self.legacy_links.insert(
                OrderTest(order_id=order_id, test_group_id=group.id, test_name=group.name)
            )
        else:
            self.links.insert(
                OrderTestGroup(order_id=order_id, test_group_id=group.id, test_name=group.name)
            )

    def get_order(self, order_id: str) -> Order:
        return self.orders.get(order_id)  # type: ignore[return-value]

    def list_orders(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        status: str | None = None,
    ) -> list[Order]:
        _check_date(date_from, "start date")
        _check_date(date_to, "end date")
        try:
            parsed = OrderStatus.parse(status) if status else None
        except ValueError as e:
            raise ValidationError(str(e)) from None
        return self.orders.list_orders(date_from=date_from, date_to=date_to, status=parsed)
