# Overview: Bridges committed order status transitions to stock mutations.

"""
Trigger table (new status -> action, keyed by the order's stock_state):

    packed                        none      -> reserved   RESERVE
    delivered / store_sale        reserved  -> committed  COMMIT (from reservation)
                                  none      -> committed  COMMIT (direct sale)
    cancelled / rejected / returned
                                  reserved  -> released   RELEASE
                                  committed -> restored   RESTORE

Any other status, or stock_state none on a release/restore status, is NONE.
A trigger whose stock_state has already moved on, or whose order has
already left new_status, is SKIPPED.

Idempotency: the stock_state move is a compare-and-set in the same DB
transaction as the stock mutation, so replaying apply() for the same
transition finds the state advanced and does nothing. The same
compare-and-set also requires the order to still be in new_status, so a
late trigger never reserves or commits stock for an order that a later
transition has already cancelled. StockMovement's unique
(order_item_id, movement_type) is a second line of defense.

apply() runs after the status change has committed. It never raises for a
stock failure: the result carries the error and the order service surfaces
it as a warning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..enums import OrderStatus as S, StockState
from ..errors import DomainError
from ..extensions import db
from ..models import Order
from . import stock_service


ACTION_RESERVE = "RESERVE"
ACTION_COMMIT = "COMMIT"
ACTION_RELEASE = "RELEASE"
ACTION_RESTORE = "RESTORE"
ACTION_NONE = "NONE"
ACTION_SKIPPED = "SKIPPED"

RESERVE_STATUSES = frozenset({S.PACKED})
COMMIT_STATUSES = frozenset({S.DELIVERED, S.STORE_SALE})
RETURN_STATUSES = frozenset({S.CANCELLED, S.REJECTED, S.RETURNED})

# (action, stock_state required before, stock_state after)
_PLANS = {
    ACTION_RESERVE: ((StockState.NONE,), StockState.RESERVED),
    ACTION_COMMIT: ((StockState.RESERVED, StockState.NONE), StockState.COMMITTED),
    ACTION_RELEASE: ((StockState.RESERVED,), StockState.RELEASED),
    ACTION_RESTORE: ((StockState.COMMITTED,), StockState.RESTORED),
}


@dataclass
class TriggerResult:
    success: bool
    action: str
    error: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "action": self.action, "error": self.error, "code": self.code}


def plan_action(new_status, stock_state) -> str:
    """Which stock action a transition into new_status calls for, given stock_state."""
    new_status = S(new_status)
    state = StockState(stock_state)

    if new_status in RESERVE_STATUSES:
        return ACTION_RESERVE if state == StockState.NONE else ACTION_SKIPPED
    if new_status in COMMIT_STATUSES:
        if state in (StockState.NONE, StockState.RESERVED):
            return ACTION_COMMIT
        return ACTION_SKIPPED
    if new_status in RETURN_STATUSES:
        if state == StockState.RESERVED:
            return ACTION_RELEASE
        if state == StockState.COMMITTED:
            return ACTION_RESTORE
        if state == StockState.NONE:
            return ACTION_NONE
        return ACTION_SKIPPED
    return ACTION_NONE


def _advance_state(order_id: int, status: S, expected: StockState, new: StockState) -> bool:
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == status.value,
            Order.stock_state == expected.value,
        )
        .values(stock_state=new.value)
        .execution_options(synchronize_session=False)
    )
    return bool(db.session.execute(stmt).rowcount)


def _mutate(action: str, order: Order, from_state: StockState, actor_id) -> None:
    for item in order.items:
        kwargs = {"order_id": order.id, "order_item_id": item.id, "actor_id": actor_id}
        if action == ACTION_RESERVE:
            stock_service.reserve(item.variant_id, item.quantity, **kwargs)
        elif action == ACTION_COMMIT:
            stock_service.commit(
                item.variant_id,
                item.quantity,
                from_reservation=from_state == StockState.RESERVED,
                **kwargs,
            )
        elif action == ACTION_RELEASE:
            stock_service.release(item.variant_id, item.quantity, **kwargs)
        elif action == ACTION_RESTORE:
            stock_service.restore(item.variant_id, item.quantity, **kwargs)


def apply(order, old_status, new_status, *, actor_id: int | None = None) -> TriggerResult:
    """
    Apply the stock side effect of an order moving old_status -> new_status.
    order may be an Order or its id.

    Commits its own DB transaction on success; rolls it back on failure.
    """
    order_id = order.id if isinstance(order, Order) else order
    order = db.session.get(Order, order_id)
    if order is None:
        return TriggerResult(success=False, action=ACTION_NONE, error=f"Order {order_id} not found", code="NOT_FOUND")

    db.session.refresh(order)
    new_status = S(new_status)
    if order.status != new_status.value:
        current_app.logger.info(
            "Inventory trigger skipped for order %s: now %s, not %s",
            order_id, order.status, new_status.value,
        )
        return TriggerResult(success=True, action=ACTION_SKIPPED)

    from_state = StockState(order.stock_state)
    action = plan_action(new_status, from_state)
    if action in (ACTION_NONE, ACTION_SKIPPED):
        return TriggerResult(success=True, action=action)

    allowed_from, to_state = _PLANS[action]
    if from_state not in allowed_from:
        return TriggerResult(success=True, action=ACTION_SKIPPED)

    try:
        if not _advance_state(order.id, new_status, from_state, to_state):
            db.session.rollback()
            return TriggerResult(success=True, action=ACTION_SKIPPED)
        _mutate(action, order, from_state, actor_id)
        db.session.commit()
    except DomainError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Inventory trigger %s failed for order %s (%s -> %s): %s",
            action, order_id, S(old_status).value, S(new_status).value, exc.message,
        )
        return TriggerResult(success=False, action=action, error=exc.message, code=exc.code)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Inventory trigger %s failed for order %s (%s -> %s): %s",
            action, order_id, S(old_status).value, S(new_status).value, exc,
        )
        return TriggerResult(success=False, action=action, error=str(exc), code="DEPENDENCY_FAILURE")

    current_app.logger.info(
        "Inventory trigger %s applied for order %s (%s -> %s)",
        action, order_id, S(old_status).value, S(new_status).value,
    )
    return TriggerResult(success=True, action=action)
