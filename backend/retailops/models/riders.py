from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Rider(db.Model):
    """Own-fleet delivery rider. Linked to the User who signs in as that rider."""
    __tablename__ = "riders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, unique=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    # active | inactive | suspended
    status = db.Column(db.String(16), nullable=False, default="active")
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    max_daily_orders = db.Column(db.Integer, nullable=False, default=20)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("rider", uselist=False))

    def __repr__(self) -> str:
        return f"<Rider id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "status": self.status,
            "is_available": self.is_available,
            "max_daily_orders": self.max_daily_orders,
            "created_at": to_utc_z(self.created_at),
        }
