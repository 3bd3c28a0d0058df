from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Variant(db.Model):
    """
    Sellable product variant and its stock counters.

    current_stock:  units physically on hand
    reserved_stock: units held for packed-but-undelivered orders

    Both counters are written ONLY through services.stock_service, which
    issues single-statement atomic updates. Nothing else may assign them.
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_variants_current_stock_nonneg"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_variants_reserved_stock_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    cost_price = db.Column(db.Numeric(12, 2), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2), nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Variant id={self.id} sku={self.sku!r} stock={self.current_stock}/{self.reserved_stock}>"

    @property
    def available_stock(self) -> int:
        return (self.current_stock or 0) - (self.reserved_stock or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "cost_price": float(self.cost_price) if self.cost_price is not None else None,
            "selling_price": float(self.selling_price) if self.selling_price is not None else None,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class Vendor(db.Model):
    __tablename__ = "vendors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # Amount owed to the vendor; purchases add, purchase returns subtract.
    balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "company_name": self.company_name,
            "phone": self.phone,
            "balance": float(self.balance or 0),
            "is_active": self.is_active,
        }
