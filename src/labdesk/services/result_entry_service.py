"""Result entry: open a result record for a panel and record analyte values."""

from __future__ import annotations

import logging

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import NotFoundError, ValidationError
from labdesk.models.base import now_iso
from labdesk.models.result import (
    ResultRecord,
    ResultRecordRepository,
    ResultValue,
    ResultValueRepository,
    normalize_flag,
)
from labdesk.services.order_items import OrderItem
from labdesk.services.progress_service import ProgressCache, ProgressService

logger = logging.getLogger(__name__)


class ResultEntryService:
    """Creates result records and writes entered values."""

    def __init__(self, db: DatabaseConnection, cache: ProgressCache | None = None) -> None:
        self.db = db
        self.progress = ProgressService(db, cache=cache)
        self.cache = self.progress.cache
        self.records = ResultRecordRepository(db)
        self.values = ResultValueRepository(db)

    def _find_item(self, order_id: str, test_group_id: str) -> OrderItem:
        self.progress.orders.get(order_id)
        for item in self.progress.get_order_items(order_id):
            if item.test_group_id == test_group_id:
                return item
        raise NotFoundError(f"Panel {test_group_id} is not ordered on order {order_id}")

    def start_result(self, order_id: str, test_group_id: str, seed_values: bool = True) -> ResultRecord:
        """Open (or return the existing) result record for one panel of an order.

        With ``seed_values`` every analyte of the panel gets an empty value row,
        so a verifier sees the full list before anything is typed in.
        """
        item = self._find_item(order_id, test_group_id)
        for link in item.lookup_ids:
            existing = self.records.find_for_link(link)
            if existing is not None:
                return existing

        record = ResultRecord(
            order_id=order_id,
            order_test_group_id=item.current_link_id,
            order_test_id=None if item.current_link_id else item.legacy_link_id,
            test_group_id=item.test_group_id,
            test_name=item.name,
        )
        with self.db.transaction():
            self.records.insert(record)
            if seed_values:
                for analyte in item.analytes:
                    self.values.insert(
                        ResultValue(
                            result_id=record.id,
                            analyte_id=analyte.id,
                            parameter=analyte.name,
                            unit=analyte.unit,
                            reference_range=analyte.reference_range,
                        )
                    )
        self.cache.invalidate(order_id)
        logger.info("Opened result %s for %s on order %s", record.id, item.name, order_id)
        return record

    def enter_value(
        self,
        result_id: str,
        analyte_id: str,
        value: str,
        flag: str | None = None,
        unit: str | None = None,
    ) -> ResultValue:
        """Record the value for one analyte (by id or name); creates the row if it was not seeded."""
        record: ResultRecord = self.records.get(result_id)  # type: ignore[assignment]
        try:
            normalized = normalize_flag(flag)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        item = self._find_item(record.order_id, record.test_group_id or "")
        analyte = next(
            (a for a in item.analytes if a.id == analyte_id or a.name.lower() == analyte_id.lower()),
            None,
        )
        if analyte is None:
            raise ValidationError(f"Analyte {analyte_id} is not part of panel {item.name}")

        with self.db.transaction():
            existing = self.values.find(result_id, analyte.id)
            if existing is None:
                rv = ResultValue(
                    result_id=result_id,
                    analyte_id=analyte.id,
                    parameter=analyte.name,
                    value=value,
                    unit=unit if unit is not None else analyte.unit,
                    reference_range=analyte.reference_range,
                    flag=normalized,
                )
                self.values.insert(rv)
            else:
                rv = self.values.update(  # type: ignore[assignment]
                    existing.id,
                    value=value,
                    flag=normalized.value if normalized else None,
                    unit=unit if unit is not None else existing.unit,
                )
            self.records.update(result_id, entered_at=now_iso())
        self.cache.invalidate(record.order_id)
        return rv
