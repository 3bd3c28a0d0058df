# Overview: Canonical vocabularies for orders and inventory transactions.

"""
Status values are stored as their lowercase string value.

Inputs coming from clients, imports or older integrations use many spellings
("Out For Delivery", "out-for-delivery", "OFD", "confirmed", ...). They are
resolved to the canonical enum exactly once, at the request boundary, through
normalize_order_status() / normalize_fulfillment_type(). Services only ever
see enum members.
"""

from __future__ import annotations

import re
from enum import Enum

from .errors import ValidationError


class OrderStatus(str, Enum):
    INTAKE = "intake"
    FOLLOW_UP = "follow_up"
    CONVERTED = "converted"
    HOLD = "hold"
    PACKED = "packed"
    ASSIGNED = "assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    HANDOVER_TO_COURIER = "handover_to_courier"
    IN_TRANSIT = "in_transit"
    STORE_SALE = "store_sale"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    RETURN_INITIATED = "return_initiated"
    RETURNED = "returned"


class FulfillmentType(str, Enum):
    SELF_DELIVERY = "self_delivery"
    THIRD_PARTY_COURIER = "third_party_courier"
    STORE = "store"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    DAMAGE = "damage"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    VOIDED = "voided"


class StockState(str, Enum):
    """Where an order's items sit relative to variant stock."""

    NONE = "none"
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"
    RESTORED = "restored"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    OPERATOR = "operator"
    RIDER = "rider"
    VIEWER = "viewer"


ORDER_STATUS_ALIASES = {
    "new": OrderStatus.INTAKE,
    "lead": OrderStatus.INTAKE,
    "followup": OrderStatus.FOLLOW_UP,
    "confirmed": OrderStatus.CONVERTED,
    "on_hold": OrderStatus.HOLD,
    "ofd": OrderStatus.OUT_FOR_DELIVERY,
    "dispatched": OrderStatus.OUT_FOR_DELIVERY,
    "handover": OrderStatus.HANDOVER_TO_COURIER,
    "shipped": OrderStatus.HANDOVER_TO_COURIER,
    "intransit": OrderStatus.IN_TRANSIT,
    "pos_sale": OrderStatus.STORE_SALE,
    "completed": OrderStatus.DELIVERED,
    "canceled": OrderStatus.CANCELLED,
    "rto_initiated": OrderStatus.RETURN_INITIATED,
    "rto": OrderStatus.RETURNED,
}

FULFILLMENT_TYPE_ALIASES = {
    "inside_valley": FulfillmentType.SELF_DELIVERY,
    "rider": FulfillmentType.SELF_DELIVERY,
    "outside_valley": FulfillmentType.THIRD_PARTY_COURIER,
    "courier": FulfillmentType.THIRD_PARTY_COURIER,
    "pos": FulfillmentType.STORE,
    "walk_in": FulfillmentType.STORE,
}


def _slug(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def normalize_order_status(value) -> OrderStatus:
    """Resolve any accepted spelling of a status to the canonical member."""
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required")
    key = _slug(value)
    try:
        return OrderStatus(key)
    except ValueError:
        pass
    if key in ORDER_STATUS_ALIASES:
        return ORDER_STATUS_ALIASES[key]
    raise ValidationError(
        f"Unknown status '{value}'",
        details={"allowed": [s.value for s in OrderStatus]},
    )


def normalize_fulfillment_type(value) -> FulfillmentType:
    if isinstance(value, FulfillmentType):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("fulfillment_type is required")
    key = _slug(value)
    try:
        return FulfillmentType(key)
    except ValueError:
        pass
    if key in FULFILLMENT_TYPE_ALIASES:
        return FULFILLMENT_TYPE_ALIASES[key]
    raise ValidationError(
        f"Unknown fulfillment_type '{value}'",
        details={"allowed": [f.value for f in FulfillmentType]},
    )


def normalize_transaction_type(value) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("transaction_type is required")
    try:
        return TransactionType(_slug(value))
    except ValueError:
        raise ValidationError(
            f"Unknown transaction_type '{value}'",
            details={"allowed": [t.value for t in TransactionType]},
        )
