# Overview: Single authority on whether an order status transition is allowed.

"""
validate(order, target, actor, extra_fields) evaluates, in order:

1. Fulfillment compatibility   target must exist in the channel's vocabulary
2. Graph membership            (status -> target) must be a channel edge
3. Role lock                   rider / courier locks, then role capabilities
4. Required fields             per target status
5. Eligibility                 rider capacity, stock available for packing

and stops at the first failure. The result names the failing rule through
`code` and carries `locked_by` / `requires` for the UI.

Statuses and channels are a fixed vocabulary (enums.OrderStatus,
enums.FulfillmentType); the tables below are the whole state machine.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional

from ..actors import Actor
from ..enums import FulfillmentType, OrderStatus as S, Role
from ..errors import (
    AccessDenied,
    DomainError,
    InsufficientStock,
    InvalidTransition,
    MissingRequiredField,
    RiderUnavailable,
)
from ..extensions import db
from ..models import Order, Rider, Variant


# -- Channel graphs --

WORKFLOW_GRAPHS: dict[FulfillmentType, dict[S, tuple[S, ...]]] = {
    FulfillmentType.SELF_DELIVERY: {
        S.INTAKE: (S.FOLLOW_UP, S.CONVERTED, S.CANCELLED),
        S.FOLLOW_UP: (S.CONVERTED, S.HOLD, S.CANCELLED),
        S.CONVERTED: (S.PACKED, S.HOLD, S.CANCELLED),
        S.HOLD: (S.CONVERTED, S.PACKED, S.CANCELLED),
        S.PACKED: (S.ASSIGNED, S.CANCELLED),
        S.ASSIGNED: (S.OUT_FOR_DELIVERY, S.DELIVERED, S.PACKED, S.CANCELLED),
        S.OUT_FOR_DELIVERY: (S.DELIVERED, S.REJECTED, S.RETURN_INITIATED, S.ASSIGNED),
        S.DELIVERED: (S.RETURN_INITIATED,),
        S.REJECTED: (S.RETURN_INITIATED, S.RETURNED),
        S.RETURN_INITIATED: (S.RETURNED,),
        S.RETURNED: (),
        S.CANCELLED: (),
    },
    FulfillmentType.THIRD_PARTY_COURIER: {
        S.INTAKE: (S.FOLLOW_UP, S.CONVERTED, S.CANCELLED),
        S.FOLLOW_UP: (S.CONVERTED, S.HOLD, S.CANCELLED),
        S.CONVERTED: (S.PACKED, S.HOLD, S.CANCELLED),
        S.HOLD: (S.CONVERTED, S.PACKED, S.CANCELLED),
        S.PACKED: (S.HANDOVER_TO_COURIER, S.CANCELLED),
        S.HANDOVER_TO_COURIER: (S.IN_TRANSIT, S.DELIVERED, S.RETURN_INITIATED),
        S.IN_TRANSIT: (S.DELIVERED, S.RETURN_INITIATED),
        S.DELIVERED: (S.RETURN_INITIATED,),
        S.RETURN_INITIATED: (S.RETURNED,),
        S.RETURNED: (),
        S.CANCELLED: (),
    },
    FulfillmentType.STORE: {
        S.INTAKE: (S.CONVERTED, S.STORE_SALE, S.CANCELLED),
        S.CONVERTED: (S.PACKED, S.STORE_SALE, S.CANCELLED),
        S.PACKED: (S.STORE_SALE, S.CANCELLED),
        S.STORE_SALE: (S.DELIVERED,),
        S.DELIVERED: (S.RETURN_INITIATED,),
        S.RETURN_INITIATED: (S.RETURNED,),
        S.RETURNED: (),
        S.CANCELLED: (),
    },
}


def _vocabulary(graph) -> frozenset:
    statuses = set(graph)
    for targets in graph.values():
        statuses.update(targets)
    return frozenset(statuses)


CHANNEL_STATUSES = {channel: _vocabulary(graph) for channel, graph in WORKFLOW_GRAPHS.items()}

# Statuses an order may be in while its fulfillment_type is still correctable.
PRE_PACKING_STATUSES = frozenset({S.INTAKE, S.FOLLOW_UP, S.CONVERTED, S.HOLD})


# -- Role capabilities --

# Roles listed here may use every declared channel edge (still subject to locks).
FULL_GRAPH_ROLES = frozenset({Role.ADMIN.value, Role.MANAGER.value})

ROLE_TRANSITIONS: dict[str, dict[S, frozenset]] = {
    Role.OPERATOR.value: {
        S.INTAKE: frozenset({S.FOLLOW_UP, S.CONVERTED, S.STORE_SALE, S.CANCELLED}),
        S.FOLLOW_UP: frozenset({S.CONVERTED, S.HOLD, S.CANCELLED}),
        S.CONVERTED: frozenset({S.PACKED, S.HOLD, S.STORE_SALE, S.CANCELLED}),
        S.HOLD: frozenset({S.CONVERTED, S.PACKED, S.CANCELLED}),
        S.PACKED: frozenset({S.ASSIGNED, S.HANDOVER_TO_COURIER, S.STORE_SALE, S.CANCELLED}),
        S.STORE_SALE: frozenset({S.DELIVERED}),
        S.DELIVERED: frozenset({S.RETURN_INITIATED}),
        S.REJECTED: frozenset({S.RETURN_INITIATED, S.RETURNED}),
        S.RETURN_INITIATED: frozenset({S.RETURNED}),
    },
    Role.RIDER.value: {
        S.ASSIGNED: frozenset({S.OUT_FOR_DELIVERY, S.DELIVERED}),
        S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED, S.REJECTED, S.RETURN_INITIATED}),
    },
    Role.VIEWER.value: {},
}


@dataclass(frozen=True)
class StatusLock:
    locked_to: str
    allowed_roles: frozenset
    requires_assigned_rider: bool
    message: str


STATUS_LOCKS = {
    S.ASSIGNED: StatusLock(
        locked_to="rider",
        allowed_roles=frozenset({Role.RIDER.value, Role.ADMIN.value}),
        requires_assigned_rider=True,
        message="Order is assigned to a rider. Only the assigned rider or an admin can update it.",
    ),
    S.OUT_FOR_DELIVERY: StatusLock(
        locked_to="rider",
        allowed_roles=frozenset({Role.RIDER.value, Role.ADMIN.value}),
        requires_assigned_rider=True,
        message="Order is out for delivery. Only the assigned rider or an admin can update it.",
    ),
    S.HANDOVER_TO_COURIER: StatusLock(
        locked_to="courier",
        allowed_roles=frozenset({Role.ADMIN.value, Role.MANAGER.value}),
        requires_assigned_rider=False,
        message="Order is with the courier. Updates require an admin or manager.",
    ),
    S.IN_TRANSIT: StatusLock(
        locked_to="courier",
        allowed_roles=frozenset({Role.ADMIN.value, Role.MANAGER.value}),
        requires_assigned_rider=False,
        message="Order is in transit with the courier. Updates require an admin or manager.",
    ),
}


# -- Required fields --

# Each entry: (field, aliases that also satisfy it)
REQUIRED_FIELDS: dict[S, tuple[tuple[str, tuple[str, ...]], ...]] = {
    S.ASSIGNED: (("rider_id", ()),),
    S.HANDOVER_TO_COURIER: (
        ("courier_partner", ()),
        ("courier_tracking_id", ()),
    ),
    S.CANCELLED: (("cancellation_reason", ("reason",)),),
    S.REJECTED: (("rejection_reason", ("reason",)),),
    S.RETURN_INITIATED: (("return_reason", ("reason",)),),
}

OPTIONAL_FIELDS: dict[S, tuple[str, ...]] = {
    S.FOLLOW_UP: ("followup_reason", "followup_date"),
    S.HANDOVER_TO_COURIER: ("tracking_url",),
}

ACTIVE_RIDER_STATUSES = (S.ASSIGNED.value, S.OUT_FOR_DELIVERY.value)


@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    locked_by: Any = None
    requires: Optional[dict] = None
    details: dict = field(default_factory=dict)
    error: Optional[DomainError] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, error: DomainError) -> "ValidationResult":
        details = dict(error.details)
        return cls(
            valid=False,
            reason=error.message,
            code=error.code,
            locked_by=details.get("locked_by"),
            requires=details.get("requires"),
            details=details,
            error=error,
        )

    def to_error(self) -> DomainError:
        if self.valid:
            raise RuntimeError("to_error() called on a valid result")
        return self.error or InvalidTransition(self.reason or "Transition not allowed", details=self.details)

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if not self.valid:
            data.update({
                "reason": self.reason,
                "code": self.code,
                "locked_by": self.locked_by,
                "requires": self.requires,
            })
        return data


def _status(value) -> S:
    return value if isinstance(value, S) else S(value)


def _channel(order: Order) -> FulfillmentType:
    return FulfillmentType(order.fulfillment_type)


def _has_value(extra: dict, name: str) -> bool:
    value = extra.get(name)
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


# -- Rules --

def _check_compatibility(order: Order, target: S) -> None:
    channel = _channel(order)
    if target not in CHANNEL_STATUSES[channel]:
        raise InvalidTransition(
            f"Status '{target.value}' is not used for {channel.value} orders",
            details={"from": order.status, "to": target.value, "fulfillment_type": channel.value},
        )


def _check_graph(order: Order, target: S) -> None:
    channel = _channel(order)
    current = _status(order.status)
    allowed = WORKFLOW_GRAPHS[channel].get(current, ())
    if target not in allowed:
        raise InvalidTransition(
            f"Cannot move a {channel.value} order from '{current.value}' to '{target.value}'",
            details={
                "from": current.value,
                "to": target.value,
                "fulfillment_type": channel.value,
                "allowed": [s.value for s in allowed],
            },
        )


def check_lock(order: Order, actor: Actor) -> None:
    """Raise AccessDenied if the order's current status is locked away from actor."""
    if actor.is_admin:
        return

    lock = STATUS_LOCKS.get(_status(order.status))
    if lock is None:
        return
    if lock.requires_assigned_rider:
        holder = order.assigned_rider_id
        if actor.role != Role.RIDER.value or actor.rider_id is None or actor.rider_id != holder:
            raise AccessDenied(lock.message, locked_by=holder, details={"locked_to": lock.locked_to})
    elif actor.role not in lock.allowed_roles:
        raise AccessDenied(
            lock.message,
            locked_by=order.courier_partner or lock.locked_to,
            details={"locked_to": lock.locked_to},
        )


def _check_role(order: Order, target: S, actor: Actor) -> None:
    if actor.is_admin:
        return

    check_lock(order, actor)

    current = _status(order.status)
    if actor.role in FULL_GRAPH_ROLES:
        return
    capabilities = ROLE_TRANSITIONS.get(actor.role, {})
    if target not in capabilities.get(current, frozenset()):
        raise AccessDenied(
            f"Role '{actor.role}' cannot move an order from '{current.value}' to '{target.value}'",
            details={"role": actor.role},
        )


def missing_fields(target: S, extra_fields: dict) -> list[str]:
    missing = []
    for name, aliases in REQUIRED_FIELDS.get(target, ()):
        if _has_value(extra_fields, name) or any(_has_value(extra_fields, a) for a in aliases):
            continue
        missing.append(name)
    return missing


def _check_required(target: S, extra_fields: dict) -> None:
    missing = missing_fields(target, extra_fields)
    if missing:
        raise MissingRequiredField(
            f"Missing required field(s) for '{target.value}': {', '.join(missing)}",
            fields=missing,
            details={"requires": {"fields": missing, "status": target.value}},
        )


def active_order_count(rider_id: int, *, exclude_order_id: int | None = None) -> int:
    query = Order.query.filter(
        Order.assigned_rider_id == rider_id,
        Order.status.in_(ACTIVE_RIDER_STATUSES),
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query.count()


def _check_rider(order: Order, rider_id) -> None:
    try:
        rider_id = int(rider_id)
    except (TypeError, ValueError):
        raise RiderUnavailable("rider_id must be an integer", details={"rider_id": rider_id})

    rider = db.session.get(Rider, rider_id)
    if rider is None:
        raise RiderUnavailable(f"Rider {rider_id} not found", details={"rider_id": rider_id})
    if rider.status != "active":
        raise RiderUnavailable(f"Rider {rider.name} is {rider.status}", details={"rider_id": rider_id})
    if not rider.is_available:
        raise RiderUnavailable(f"Rider {rider.name} is not available", details={"rider_id": rider_id})

    active = active_order_count(rider.id, exclude_order_id=order.id)
    if active + 1 > rider.max_daily_orders:
        raise RiderUnavailable(
            f"Rider {rider.name} is at capacity ({active}/{rider.max_daily_orders})",
            details={"rider_id": rider_id, "active_orders": active, "max_daily_orders": rider.max_daily_orders},
        )


def _check_stock(order: Order) -> None:
    needed: dict[int, int] = defaultdict(int)
    for item in order.items:
        needed[item.variant_id] += item.quantity

    shortages = []
    for variant_id, qty in sorted(needed.items()):
        variant = db.session.get(Variant, variant_id)
        available = variant.available_stock if variant is not None else 0
        if available < qty:
            shortages.append({"variant_id": variant_id, "requested": qty, "available": available})
    if shortages:
        raise InsufficientStock(
            "Insufficient stock to fulfil this order",
            details={"shortages": shortages},
        )


def _check_eligibility(order: Order, target: S, extra_fields: dict) -> None:
    if target == S.ASSIGNED:
        _check_rider(order, extra_fields.get("rider_id"))
    if target == S.PACKED and order.stock_state == "none":
        _check_stock(order)
    if target == S.STORE_SALE and order.stock_state == "none":
        _check_stock(order)


def validate(order: Order, target_status, actor: Actor, extra_fields: dict | None = None) -> ValidationResult:
    """Run all rules; never raises for a business-rule failure."""
    target = _status(target_status)
    extra_fields = extra_fields or {}
    try:
        _check_compatibility(order, target)
        _check_graph(order, target)
        _check_role(order, target, actor)
        _check_required(target, extra_fields)
        _check_eligibility(order, target, extra_fields)
    except DomainError as exc:
        return ValidationResult.fail(exc)
    return ValidationResult.ok()


def get_allowed_transitions(order: Order, actor: Actor) -> list[str]:
    """Targets the actor could move this order to, before field/eligibility checks."""
    current = _status(order.status)
    allowed = []
    for target in WORKFLOW_GRAPHS[_channel(order)].get(current, ()):
        try:
            _check_role(order, target, actor)
        except AccessDenied:
            continue
        allowed.append(target.value)
    return allowed


def get_workflow_info(order: Order, actor: Actor) -> dict:
    """UI projection: allowed next statuses, lock state and per-target requirements."""
    current = _status(order.status)
    lock = STATUS_LOCKS.get(current)
    lock_info = None
    if lock is not None:
        lock_info = {
            "locked_to": lock.locked_to,
            "locked_by": order.assigned_rider_id if lock.requires_assigned_rider else (order.courier_partner or lock.locked_to),
            "message": lock.message,
        }

    allowed = get_allowed_transitions(order, actor)
    requirements = {}
    for target in allowed:
        status = S(target)
        required = [name for name, _ in REQUIRED_FIELDS.get(status, ())]
        optional = list(OPTIONAL_FIELDS.get(status, ()))
        if required or optional:
            requirements[target] = {"required": required, "optional": optional}

    return {
        "order_id": order.id,
        "status": current.value,
        "fulfillment_type": order.fulfillment_type,
        "allowed_transitions": allowed,
        "lock": lock_info,
        "can_edit": current in PRE_PACKING_STATUSES,
        "can_change_fulfillment_type": current in PRE_PACKING_STATUSES,
        "requirements": requirements,
    }
