from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryTransaction(db.Model):
    """
    Stock ledger entry (purchase, purchase_return, damage, adjustment).

    Append-only: rows are never deleted. Status moves at most once from
    pending to approved/rejected; approved rows may later be voided.

    return_lock_version is bumped by every purchase_return written or approved
    against this row (when it is a purchase). The bump claims the row for the
    rest of the DB transaction, serializing concurrent return checks.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_type_status", "transaction_type", "status"),
        db.Index("ix_invtx_reference_type_status", "reference_transaction_id", "transaction_type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(32), nullable=False, unique=True, index=True)
    vendor_invoice_no = db.Column(db.String(64), nullable=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    reference_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    transaction_date = db.Column(db.Date, nullable=False)
    total_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_quantity = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    return_lock_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "InventoryTransactionItem",
        backref="transaction",
        lazy=True,
        order_by="InventoryTransactionItem.id",
    )
    vendor = db.relationship("Vendor")
    reference_transaction = db.relationship("InventoryTransaction", remote_side=[id])

    def __repr__(self) -> str:
        return f"<InventoryTransaction id={self.id} {self.invoice_no} {self.transaction_type}/{self.status}>"

    @property
    def requires_approval(self) -> bool:
        return self.status == "pending"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "vendor_invoice_no": self.vendor_invoice_no,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "requires_approval": self.requires_approval,
            "vendor_id": self.vendor_id,
            "reference_transaction_id": self.reference_transaction_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "total_cost": float(self.total_cost or 0),
            "total_quantity": self.total_quantity,
            "reason": self.reason,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InventoryTransactionItem(db.Model):
    """
    Ledger line. quantity is signed: inbound positive, outbound negative.
    stock_before / stock_after are stamped when the line is applied (approval),
    never when a pending transaction is created.
    """
    __tablename__ = "inventory_transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    stock_before = db.Column(db.Integer, nullable=True)
    stock_after = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.String(255), nullable=True)

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_cost": float(self.unit_cost or 0),
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "notes": self.notes,
        }


class StockMovement(db.Model):
    """
    Audit row for every change to Variant.current_stock / reserved_stock.

    Order-driven movements are unique per (order_item_id, movement_type):
    an order item is reserved, committed, released or restored at most once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", "movement_type", name="uq_stock_movements_order_item_type"),
        db.Index("ix_stock_movements_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)

    # RESERVE | COMMIT | RELEASE | RESTORE | LEDGER_APPLY | LEDGER_VOID
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)
    reserved_before = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True, index=True)
    transaction_item_id = db.Column(db.Integer, db.ForeignKey("inventory_transaction_items.id"), nullable=True)

    source = db.Column(db.String(64), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reserved_before": self.reserved_before,
            "reserved_after": self.reserved_after,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "transaction_id": self.transaction_id,
            "transaction_item_id": self.transaction_item_id,
            "source": self.source,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
