from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order and its fulfillment state.

    status / fulfillment_type hold enums.OrderStatus / enums.FulfillmentType
    values. status is only ever written by services.order_service through a
    compare-and-set on (status, version_id).

    stock_state records which stock side effect has been applied for the
    order's items (none, reserved, committed, released, restored); the
    inventory trigger executor advances it with its own compare-and-set so a
    replayed trigger never mutates stock twice.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_fulfillment", "status", "fulfillment_type"),
        db.Index("ix_orders_rider_status", "assigned_rider_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default="intake", index=True)
    fulfillment_type = db.Column(db.String(32), nullable=False, default="self_delivery", index=True)
    stock_state = db.Column(db.String(16), nullable=False, default="none")

    assigned_rider_id = db.Column(db.Integer, db.ForeignKey("riders.id"), nullable=True)
    courier_partner = db.Column(db.String(64), nullable=True)
    courier_tracking_id = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)

    followup_reason = db.Column(db.String(255), nullable=True)
    followup_date = db.Column(db.Date, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Write-once per transition
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_initiated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    assigned_rider = db.relationship("Rider", foreign_keys=[assigned_rider_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "status": self.status,
            "fulfillment_type": self.fulfillment_type,
            "stock_state": self.stock_state,
            "assigned_rider_id": self.assigned_rider_id,
            "courier_partner": self.courier_partner,
            "courier_tracking_id": self.courier_tracking_id,
            "tracking_url": self.tracking_url,
            "followup_reason": self.followup_reason,
            "followup_date": self.followup_date.isoformat() if self.followup_date else None,
            "cancellation_reason": self.cancellation_reason,
            "rejection_reason": self.rejection_reason,
            "return_reason": self.return_reason,
            "total_amount": float(self.total_amount or 0),
            "converted_at": to_utc_z(self.converted_at),
            "packed_at": to_utc_z(self.packed_at),
            "assigned_at": to_utc_z(self.assigned_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "return_initiated_at": to_utc_z(self.return_initiated_at),
            "returned_at": to_utc_z(self.returned_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Snapshots at order time
    sku = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price or 0),
            "sku": self.sku,
            "product_name": self.product_name,
        }


class OrderStatusLog(db.Model):
    """
    Order activity timeline. Append-only; one row per committed transition,
    written in the same DB transaction as the status change.
    """
    __tablename__ = "order_status_logs"
    __table_args__ = (
        db.Index("ix_order_status_logs_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    old_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    actor_role = db.Column(db.String(32), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
