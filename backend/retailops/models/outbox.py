from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SideEffectTask(db.Model):
    """
    Post-commit side effect (notification, courier sync) waiting for dispatch.

    Rows are enqueued after an order transition commits and drained by the
    `flask outbox dispatch` command. A failing handler is retried with
    exponential backoff until SIDE_EFFECT_MAX_ATTEMPTS, then parked as FAILED.
    """
    __tablename__ = "side_effect_tasks"
    __table_args__ = (
        db.Index("ix_side_effect_tasks_status_due", "status", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    task_type = db.Column(db.String(64), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    # PENDING | DONE | FAILED
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_type": self.task_type,
            "order_id": self.order_id,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
