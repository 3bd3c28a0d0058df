# Overview: Atomic stock primitives; the only writers of Variant.current_stock / reserved_stock.

"""
Stock invariants (authoritative):

- current_stock and reserved_stock never go negative; reserved_stock never
  exceeds current_stock through these primitives.
- Every mutation is ONE conditional UPDATE issued by the store
  (... WHERE current_stock + delta >= 0). There is no read-modify-write in
  the application tier, so concurrent callers cannot lose updates.
- rowcount == 0 means the condition failed (or the variant is missing); the
  primitive raises and the caller's whole DB transaction is rolled back.
- Each successful mutation appends a StockMovement audit row in the same DB
  transaction.

Callers: services.inventory_triggers (order reserve/commit/release/restore)
and services.approval_service / services.ledger_service (ledger apply/void).
Nothing else may write the counters.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import StockMovement, Variant


MOVEMENT_RESERVE = "RESERVE"
MOVEMENT_COMMIT = "COMMIT"
MOVEMENT_RELEASE = "RELEASE"
MOVEMENT_RESTORE = "RESTORE"
MOVEMENT_LEDGER_APPLY = "LEDGER_APPLY"
MOVEMENT_LEDGER_VOID = "LEDGER_VOID"


@dataclass(frozen=True)
class StockChange:
    variant_id: int
    stock_before: int
    stock_after: int
    reserved_before: int
    reserved_after: int

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reserved_before": self.reserved_before,
            "reserved_after": self.reserved_after,
        }


def _read_counters(variant_id: int):
    row = (
        db.session.query(Variant.current_stock, Variant.reserved_stock)
        .filter(Variant.id == variant_id)
        .one_or_none()
    )
    if row is None:
        raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return row


def _execute(stmt, variant_id: int, message: str, **detail):
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount:
        return
    current, reserved = _read_counters(variant_id)
    raise InsufficientStock(
        message,
        details={
            "variant_id": variant_id,
            "current_stock": current,
            "reserved_stock": reserved,
            "available_stock": current - reserved,
            **detail,
        },
    )


def _record(
    *,
    variant_id: int,
    movement_type: str,
    quantity: int,
    stock_delta: int,
    reserved_delta: int,
    order_id=None,
    order_item_id=None,
    transaction_id=None,
    transaction_item_id=None,
    source=None,
    actor_id=None,
) -> StockChange:
    current, reserved = _read_counters(variant_id)
    change = StockChange(
        variant_id=variant_id,
        stock_before=current - stock_delta,
        stock_after=current,
        reserved_before=reserved - reserved_delta,
        reserved_after=reserved,
    )
    db.session.add(
        StockMovement(
            variant_id=variant_id,
            movement_type=movement_type,
            quantity=quantity,
            stock_before=change.stock_before,
            stock_after=change.stock_after,
            reserved_before=change.reserved_before,
            reserved_after=change.reserved_after,
            order_id=order_id,
            order_item_id=order_item_id,
            transaction_id=transaction_id,
            transaction_item_id=transaction_item_id,
            source=source,
            actor_user_id=actor_id,
        )
    )
    return change


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")


def atomic_adjust(
    variant_id: int,
    delta: int,
    *,
    movement_type: str = MOVEMENT_LEDGER_APPLY,
    source: str | None = None,
    order_id: int | None = None,
    order_item_id: int | None = None,
    transaction_id: int | None = None,
    transaction_item_id: int | None = None,
    actor_id: int | None = None,
) -> StockChange:
    """
    current_stock += delta, failing with InsufficientStock if the result
    would be negative. Does not commit.
    """
    if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
        raise ValidationError("delta must be a non-zero integer")

    stmt = (
        update(Variant)
        .where(Variant.id == variant_id, Variant.current_stock + delta >= 0)
        .values(current_stock=Variant.current_stock + delta)
    )
    _execute(stmt, variant_id, "Insufficient stock for adjustment", requested_delta=delta)
    return _record(
        variant_id=variant_id,
        movement_type=movement_type,
        quantity=delta,
        stock_delta=delta,
        reserved_delta=0,
        order_id=order_id,
        order_item_id=order_item_id,
        transaction_id=transaction_id,
        transaction_item_id=transaction_item_id,
        source=source,
        actor_id=actor_id,
    )


def reserve(variant_id: int, quantity: int, *, order_id=None, order_item_id=None, actor_id=None) -> StockChange:
    """reserved_stock += quantity, only while available stock covers it."""
    _require_positive(quantity)
    stmt = (
        update(Variant)
        .where(
            Variant.id == variant_id,
            Variant.current_stock - Variant.reserved_stock >= quantity,
        )
        .values(reserved_stock=Variant.reserved_stock + quantity)
    )
    _execute(stmt, variant_id, "Insufficient available stock to reserve", requested=quantity)
    return _record(
        variant_id=variant_id,
        movement_type=MOVEMENT_RESERVE,
        quantity=quantity,
        stock_delta=0,
        reserved_delta=quantity,
        order_id=order_id,
        order_item_id=order_item_id,
        source="order",
        actor_id=actor_id,
    )


def release(variant_id: int, quantity: int, *, order_id=None, order_item_id=None, actor_id=None) -> StockChange:
    """reserved_stock -= quantity. Fails if the reservation is not there."""
    _require_positive(quantity)
    stmt = (
        update(Variant)
        .where(Variant.id == variant_id, Variant.reserved_stock >= quantity)
        .values(reserved_stock=Variant.reserved_stock - quantity)
    )
    _execute(stmt, variant_id, "Reservation is smaller than the quantity to release", requested=quantity)
    return _record(
        variant_id=variant_id,
        movement_type=MOVEMENT_RELEASE,
        quantity=-quantity,
        stock_delta=0,
        reserved_delta=-quantity,
        order_id=order_id,
        order_item_id=order_item_id,
        source="order",
        actor_id=actor_id,
    )


def commit(
    variant_id: int,
    quantity: int,
    *,
    from_reservation: bool = True,
    order_id=None,
    order_item_id=None,
    actor_id=None,
) -> StockChange:
    """
    Ship stock out: current_stock -= quantity.

    from_reservation=True also consumes the matching reservation (packed ->
    delivered). from_reservation=False is a direct sale that was never
    reserved and may only take unreserved stock.
    """
    _require_positive(quantity)
    if from_reservation:
        stmt = (
            update(Variant)
            .where(
                Variant.id == variant_id,
                Variant.current_stock >= quantity,
                Variant.reserved_stock >= quantity,
            )
            .values(
                current_stock=Variant.current_stock - quantity,
                reserved_stock=Variant.reserved_stock - quantity,
            )
        )
        reserved_delta = -quantity
    else:
        stmt = (
            update(Variant)
            .where(
                Variant.id == variant_id,
                Variant.current_stock - Variant.reserved_stock >= quantity,
            )
            .values(current_stock=Variant.current_stock - quantity)
        )
        reserved_delta = 0
    _execute(stmt, variant_id, "Insufficient stock to commit", requested=quantity)
    return _record(
        variant_id=variant_id,
        movement_type=MOVEMENT_COMMIT,
        quantity=-quantity,
        stock_delta=-quantity,
        reserved_delta=reserved_delta,
        order_id=order_id,
        order_item_id=order_item_id,
        source="order",
        actor_id=actor_id,
    )


def restore(variant_id: int, quantity: int, *, order_id=None, order_item_id=None, actor_id=None) -> StockChange:
    """Put committed stock back on hand (cancelled / returned after delivery)."""
    _require_positive(quantity)
    return atomic_adjust(
        variant_id,
        quantity,
        movement_type=MOVEMENT_RESTORE,
        source="order",
        order_id=order_id,
        order_item_id=order_item_id,
        actor_id=actor_id,
    )


def available_stock(variant_id: int) -> int:
    current, reserved = _read_counters(variant_id)
    return current - reserved
