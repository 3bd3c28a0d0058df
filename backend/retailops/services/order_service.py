# Overview: Order state machine; executes validated status transitions.

"""
Order transition invariants (authoritative):

- Status only changes through transition(), after workflow_rules.validate().
- The write is a compare-and-set on (status, version_id) as read. A request
  that lost a race updates nothing and fails with Conflict.
- The status change, its extra fields, the write-once timestamp and the
  OrderStatusLog row commit together.
- Requesting the current status is a no-op success: no timestamps, no stock,
  no log row. The rider/courier lock still applies to it.
- An assignment claims the rider row before the capacity count, so two
  assignments to one rider serialize and cannot both take the last slot.
- Stock effects (inventory_triggers) and side effects (outbox) run after
  the commit. Their failures are returned as warnings and never undo the
  committed status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app
from sqlalchemy import func, update

from ..actors import Actor
from ..enums import (
    FulfillmentType,
    OrderStatus as S,
    Role,
    StockState,
    normalize_fulfillment_type,
    normalize_order_status,
)
from ..errors import AccessDenied, Conflict, DomainError, NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, OrderStatusLog, Rider, Variant
from ..time_utils import parse_iso_date, utcnow
from . import inventory_triggers, side_effects, workflow_rules
from .concurrency import run_with_retry
from .inventory_triggers import TriggerResult
from .sequence_service import next_order_number


TIMESTAMP_COLUMNS = {
    S.CONVERTED: "converted_at",
    S.PACKED: "packed_at",
    S.ASSIGNED: "assigned_at",
    S.OUT_FOR_DELIVERY: "dispatched_at",
    S.HANDOVER_TO_COURIER: "dispatched_at",
    S.DELIVERED: "delivered_at",
    S.CANCELLED: "cancelled_at",
    S.REJECTED: "rejected_at",
    S.RETURN_INITIATED: "return_initiated_at",
    S.RETURNED: "returned_at",
}

REASON_COLUMNS = {
    S.CANCELLED: "cancellation_reason",
    S.REJECTED: "rejection_reason",
    S.RETURN_INITIATED: "return_reason",
}

ORDER_EDITOR_ROLES = frozenset({Role.ADMIN.value, Role.MANAGER.value, Role.OPERATOR.value})


@dataclass
class TransitionOutcome:
    order: Order
    old_status: str
    new_status: str
    changed: bool
    inventory: Optional[TriggerResult] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed": self.changed,
            "inventory": self.inventory.to_dict() if self.inventory else None,
            "warnings": self.warnings,
        }


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_order_timeline(order_id: int) -> list[OrderStatusLog]:
    get_order(order_id)
    return (
        OrderStatusLog.query.filter_by(order_id=order_id)
        .order_by(OrderStatusLog.created_at.asc(), OrderStatusLog.id.asc())
        .all()
    )


def _reason_text(target: S, extra_fields: dict) -> Optional[str]:
    column = REASON_COLUMNS.get(target)
    if column:
        return extra_fields.get(column) or extra_fields.get("reason")
    if target == S.FOLLOW_UP:
        return extra_fields.get("followup_reason") or extra_fields.get("reason")
    return extra_fields.get("reason")


def _transition_values(order: Order, old: S, target: S, extra_fields: dict, now) -> dict:
    values = {
        "status": target.value,
        "version_id": order.version_id + 1,
        "updated_at": now,
    }

    column = TIMESTAMP_COLUMNS.get(target)
    if column:
        values[column] = func.coalesce(getattr(Order, column), now)

    if target == S.ASSIGNED:
        values["assigned_rider_id"] = int(extra_fields["rider_id"])
    elif target == S.PACKED and old == S.ASSIGNED:
        values["assigned_rider_id"] = None
    elif target == S.HANDOVER_TO_COURIER:
        values["courier_partner"] = extra_fields["courier_partner"]
        values["courier_tracking_id"] = extra_fields["courier_tracking_id"]
        if extra_fields.get("tracking_url"):
            values["tracking_url"] = extra_fields["tracking_url"]
    elif target == S.FOLLOW_UP:
        values["followup_reason"] = _reason_text(target, extra_fields)
        if extra_fields.get("followup_date"):
            try:
                values["followup_date"] = parse_iso_date(extra_fields["followup_date"])
            except ValueError:
                raise ValidationError("followup_date must be an ISO-8601 date")

    reason_column = REASON_COLUMNS.get(target)
    if reason_column:
        values[reason_column] = _reason_text(target, extra_fields)

    return values


def _claim_rider(rider_id) -> None:
    """No-op write on the rider row; holds it until this DB transaction ends."""
    try:
        rider_id = int(rider_id)
    except (TypeError, ValueError):
        return
    db.session.execute(
        update(Rider)
        .where(Rider.id == rider_id)
        .values(max_daily_orders=Rider.max_daily_orders)
        .execution_options(synchronize_session=False)
    )


def transition(order_id: int, requested_status, actor: Actor, extra_fields: dict | None = None) -> TransitionOutcome:
    """
    Move an order to requested_status.

    Raises InvalidTransition, AccessDenied, MissingRequiredField,
    RiderUnavailable or InsufficientStock when validation fails, NotFound for
    an unknown order, and Conflict when the order changed underneath us.
    """
    target = normalize_order_status(requested_status)
    extra_fields = dict(extra_fields or {})

    def _op():
        order = get_order(order_id)
        old = S(order.status)
        if old == target:
            workflow_rules.check_lock(order, actor)
            return order, old, False

        if target == S.ASSIGNED:
            _claim_rider(extra_fields.get("rider_id"))

        result = workflow_rules.validate(order, target, actor, extra_fields)
        if not result.valid:
            current_app.logger.warning(
                "Transition rejected for order %s (%s -> %s) by user=%s role=%s: %s [%s]",
                order.order_number, old.value, target.value, actor.user_id, actor.role, result.reason, result.code,
            )
            raise result.to_error()

        now = utcnow()
        stmt = (
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == old.value,
                Order.version_id == order.version_id,
            )
            .values(**_transition_values(order, old, target, extra_fields, now))
            .execution_options(synchronize_session=False)
        )
        if not db.session.execute(stmt).rowcount:
            db.session.rollback()
            raise Conflict(
                "Order was modified concurrently; reload and retry",
                details={"order_id": order_id, "expected_status": old.value},
            )

        db.session.add(
            OrderStatusLog(
                order_id=order.id,
                old_status=old.value,
                new_status=target.value,
                actor_user_id=actor.user_id,
                actor_role=actor.role,
                reason=_reason_text(target, extra_fields),
            )
        )
        db.session.commit()
        return order, old, True

    order, old, changed = run_with_retry(_op)
    if not changed:
        return TransitionOutcome(order=order, old_status=old.value, new_status=old.value, changed=False)

    current_app.logger.info(
        "Order %s moved %s -> %s by user=%s role=%s",
        order.order_number, old.value, target.value, actor.user_id, actor.role,
    )

    warnings = []
    trigger = inventory_triggers.apply(order.id, old, target, actor_id=actor.user_id)
    if not trigger.success:
        warnings.append(f"Inventory {trigger.action.lower()} failed: {trigger.error}")

    order = get_order(order_id)
    warnings.extend(side_effects.enqueue_transition_effects(order, old, target))

    return TransitionOutcome(
        order=get_order(order_id),
        old_status=old.value,
        new_status=target.value,
        changed=True,
        inventory=trigger,
        warnings=warnings,
    )


def bulk_transition(order_ids, requested_status, actor: Actor, extra_fields: dict | None = None) -> dict:
    """Apply the same transition to many orders; each succeeds or fails on its own."""
    if not isinstance(order_ids, (list, tuple)) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")
    target = normalize_order_status(requested_status)

    results = []
    for raw_id in order_ids:
        try:
            outcome = transition(int(raw_id), target, actor, extra_fields)
        except DomainError as exc:
            db.session.rollback()
            results.append({"order_id": raw_id, "success": False, **exc.to_dict()})
        except (TypeError, ValueError):
            results.append({"order_id": raw_id, "success": False, "error": "Invalid order id", "code": "VALIDATION_ERROR"})
        else:
            results.append({
                "order_id": outcome.order.id,
                "success": True,
                "status": outcome.new_status,
                "changed": outcome.changed,
                "warnings": outcome.warnings,
            })

    succeeded = sum(1 for r in results if r["success"])
    return {
        "status": target.value,
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": results,
    }


def _order_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        try:
            variant_id = int(raw.get("variant_id"))
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationError(f"items[{index}] needs integer variant_id and quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")

        variant = db.session.get(Variant, variant_id)
        if variant is None:
            raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})

        price = raw.get("unit_price", variant.selling_price or 0)
        try:
            price = Decimal(str(price)).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"items[{index}].unit_price must be a number")
        lines.append({"variant": variant, "quantity": quantity, "unit_price": price})
    return lines


def create_order(payload: dict, actor: Actor) -> Order:
    """Create an order in intake with an ORD- number."""
    if actor.role not in ORDER_EDITOR_ROLES:
        raise AccessDenied(f"Role '{actor.role}' cannot create orders")

    customer_name = (payload.get("customer_name") or "").strip()
    if not customer_name:
        raise ValidationError("customer_name is required")
    fulfillment = normalize_fulfillment_type(payload.get("fulfillment_type") or FulfillmentType.SELF_DELIVERY)

    def _op():
        lines = _order_lines(payload.get("items"))
        order = Order(
            order_number=next_order_number(),
            customer_name=customer_name,
            customer_phone=payload.get("customer_phone"),
            shipping_address=payload.get("shipping_address"),
            status=S.INTAKE.value,
            fulfillment_type=fulfillment.value,
            stock_state=StockState.NONE.value,
            total_amount=sum((line["quantity"] * line["unit_price"] for line in lines), Decimal("0")),
            created_by_user_id=actor.user_id,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            db.session.add(
                OrderItem(
                    order_id=order.id,
                    variant_id=line["variant"].id,
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                    sku=line["variant"].sku,
                    product_name=line["variant"].name,
                )
            )
        db.session.add(
            OrderStatusLog(
                order_id=order.id,
                old_status=None,
                new_status=S.INTAKE.value,
                actor_user_id=actor.user_id,
                actor_role=actor.role,
            )
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Created order %s (%s) by user=%s", order.order_number, order.fulfillment_type, actor.user_id)
    return order


def change_fulfillment_type(order_id: int, new_type, actor: Actor) -> Order:
    """
    Correct an order's channel before packing.

    The order's current status must exist in the new channel's vocabulary,
    and no stock may have been touched yet.
    """
    if actor.role not in ORDER_EDITOR_ROLES:
        raise AccessDenied(f"Role '{actor.role}' cannot change fulfillment type")
    new_channel = normalize_fulfillment_type(new_type)

    def _op():
        order = get_order(order_id)
        old_channel = order.fulfillment_type
        if old_channel == new_channel.value:
            return order, False

        status = S(order.status)
        if status not in workflow_rules.PRE_PACKING_STATUSES or order.stock_state != StockState.NONE.value:
            raise Conflict(
                f"Fulfillment type can only change before packing (status is {status.value})",
                details={"status": status.value},
            )
        if status not in workflow_rules.CHANNEL_STATUSES[new_channel]:
            raise ValidationError(
                f"Status '{status.value}' does not exist for {new_channel.value} orders",
                details={"status": status.value, "fulfillment_type": new_channel.value},
            )

        order.fulfillment_type = new_channel.value
        if new_channel != FulfillmentType.THIRD_PARTY_COURIER:
            order.courier_partner = None
            order.courier_tracking_id = None
            order.tracking_url = None
        db.session.add(
            OrderStatusLog(
                order_id=order.id,
                old_status=status.value,
                new_status=status.value,
                actor_user_id=actor.user_id,
                actor_role=actor.role,
                reason=f"fulfillment_type {old_channel} -> {new_channel.value}",
            )
        )
        # version_id_col turns a concurrent edit into StaleDataError -> Conflict
        db.session.commit()
        return order, True

    order, changed = run_with_retry(_op)
    if changed:
        current_app.logger.info(
            "Order %s fulfillment_type changed to %s by user=%s", order.order_number, new_channel.value, actor.user_id,
        )
    return order


def list_rider_orders(rider_id: int | None) -> list[Order]:
    """Orders currently held by a rider (assigned or out for delivery), oldest first."""
    if rider_id is None:
        raise AccessDenied("Only riders have a delivery list")
    return (
        Order.query.filter(
            Order.assigned_rider_id == rider_id,
            Order.status.in_(workflow_rules.ACTIVE_RIDER_STATUSES),
        )
        .order_by(Order.assigned_at.asc(), Order.id.asc())
        .all()
    )
