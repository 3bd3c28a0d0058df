# Overview: The acting identity passed from routes into services.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from .enums import Role


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation.

    rider_id is the Rider row linked to the user, if any; the rider lock on
    assigned / out_for_delivery orders compares it against
    Order.assigned_rider_id.
    """
    user_id: Optional[int]
    role: str
    rider_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_privileged(self) -> bool:
        return self.role in current_app.config.get("PRIVILEGED_ROLES", ("admin", "manager"))

    @classmethod
    def from_user(cls, user) -> "Actor":
        rider = getattr(user, "rider", None)
        return cls(user_id=user.id, role=user.role, rider_id=rider.id if rider else None)

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role, "rider_id": self.rider_id}
