"""Guarded order status transitions, applied only on request.

Order Created -> Sample Collection -> In Progress -> Pending Approval ->
Completed -> Delivered, plus one backward edge: Pending Approval -> In Progress
("return for revision"). Nothing here moves an order on its own.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import ValidationError
from labdesk.models.base import now_iso
from labdesk.models.order import Order, OrderRepository, OrderStatus

logger = logging.getLogger(__name__)

_NEXT_ACTIONS: dict[OrderStatus, tuple[str, OrderStatus]] = {
    OrderStatus.ORDER_CREATED: ("Mark Sample Collected", OrderStatus.SAMPLE_COLLECTION),
    OrderStatus.SAMPLE_COLLECTION: ("Start Processing", OrderStatus.IN_PROGRESS),
    OrderStatus.IN_PROGRESS: ("Submit for Approval", OrderStatus.PENDING_APPROVAL),
    OrderStatus.PENDING_APPROVAL: ("Approve Results", OrderStatus.COMPLETED),
    OrderStatus.COMPLETED: ("Mark as Delivered", OrderStatus.DELIVERED),
}


class TransitionResult(BaseModel):
    allowed: bool
    reason: str | None = None
    updates: dict[str, Any] = Field(default_factory=dict)

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise ValidationError(self.reason or "Transition not allowed.")


class ConsistencyReport(BaseModel):
    is_consistent: bool
    recommended_status: OrderStatus
    issue: str | None = None


def _deny(reason: str) -> TransitionResult:
    return TransitionResult(allowed=False, reason=reason)


def transition_order_status(
    order: Order,
    new_status: "OrderStatus | str",
    actor: str | None = None,
    now: str | None = None,
) -> TransitionResult:
    """Decide whether ``order`` may move to ``new_status``.

    Pure: the order is not touched. When allowed, ``updates`` holds the
    column values to write.
    """
    try:
        target = OrderStatus.parse(new_status)
    except ValueError as e:
        return _deny(str(e))

    current = order.status
    if target == current:
        return _deny(f"Order is already '{current.value}'.")

    if current == OrderStatus.PENDING_APPROVAL and target == OrderStatus.IN_PROGRESS:
        pass  # return for revision
    elif target.rank < current.rank:
        return _deny(f"Cannot move an order back from '{current.value}' to '{target.value}'.")
    elif target == OrderStatus.ORDER_CREATED:
        return _deny("'Order Created' is only the initial status.")
    elif target == OrderStatus.SAMPLE_COLLECTION:
        if current != OrderStatus.ORDER_CREATED:
            return _deny("Sample collection can only be recorded for a newly created order.")
    elif target == OrderStatus.IN_PROGRESS:
        if not order.is_sample_collected:
            return _deny("Sample must be collected before processing can start.")
    elif target == OrderStatus.PENDING_APPROVAL:
        if current != OrderStatus.IN_PROGRESS:
            return _deny("Only orders that are In Progress can be submitted for approval.")
        if not order.is_sample_collected:
            return _deny("Sample must be collected before results can be submitted for approval.")
    elif target == OrderStatus.COMPLETED:
        if not order.is_sample_collected:
            return _deny("Sample must be collected before the order can be completed.")
    elif target == OrderStatus.DELIVERED:
        if current != OrderStatus.COMPLETED:
            return _deny("Only completed orders can be delivered.")

    stamp = now or now_iso()
    updates: dict[str, Any] = {
        "status": target.value,
        "status_updated_at": stamp,
        "status_updated_by": actor,
    }
    if target == OrderStatus.SAMPLE_COLLECTION:
        updates["sample_collected_at"] = stamp
        updates["sample_collected_by"] = actor
    return TransitionResult(allowed=True, updates=updates)


def next_action(status: "OrderStatus | str") -> tuple[str, OrderStatus] | None:
    """The single forward quick-action offered for a status, if any."""
    return _NEXT_ACTIONS.get(OrderStatus.parse(status))


def check_status_consistency(order: Order) -> ConsistencyReport:
    """Report an order whose status disagrees with its sample-collection fields."""
    collected = bool(order.sample_collected_at and order.sample_collected_by)
    if collected and order.status == OrderStatus.ORDER_CREATED:
        return ConsistencyReport(
            is_consistent=False,
            recommended_status=OrderStatus.SAMPLE_COLLECTION,
            issue="Sample is collected but status shows pending collection",
        )
    if not collected and order.status in (OrderStatus.SAMPLE_COLLECTION, OrderStatus.IN_PROGRESS):
        return ConsistencyReport(
            is_consistent=False,
            recommended_status=OrderStatus.ORDER_CREATED,
            issue="Status shows collected but sample collection data is missing",
        )
    return ConsistencyReport(is_consistent=True, recommended_status=order.status)


class WorkflowService:
    """Applies allowed transitions to stored orders."""

    def __init__(self, db: DatabaseConnection, actor: str | None = None) -> None:
        self.db = db
        self.actor = actor
        self.orders = OrderRepository(db)

    def transition(self, order_id: str, new_status: "OrderStatus | str") -> TransitionResult:
        """Move a stored order to ``new_status`` if the guards allow it."""
        with self.db.transaction():
            order: Order = self.orders.get(order_id)  # type: ignore[assignment]
            result = transition_order_status(order, new_status, actor=self.actor)
            if result.allowed:
                self.orders.update(order_id, **result.updates)
        if result.allowed:
            logger.info("Order %s: %s -> %s", order_id, order.status.value, result.updates["status"])
        else:
            logger.info("Order %s: transition refused: %s", order_id, result.reason)
        return result

    def check_consistency(self, order_id: str) -> ConsistencyReport:
        return check_status_consistency(self.orders.get(order_id))  # type: ignore[arg-type]
