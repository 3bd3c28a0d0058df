# Overview: System health, permission catalog and outbox dispatch endpoints.

import time
from flask import Blueprint, current_app, jsonify, request, g
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..decorators import require_actor, require_permission
from ..models import Order, SideEffectTask, InventoryTransaction
from ..permissions import (
    PermissionCategory,
    get_all_permission_codes,
    get_permission_definition,
    get_permissions_by_category,
    role_has_permission,
)
from ..services import side_effects

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and outbox / approval backlog.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        pending_tasks = db.session.query(SideEffectTask).filter_by(status="PENDING").count()
        pending_approvals = db.session.query(InventoryTransaction).filter_by(status="pending").count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "pending_side_effects": pending_tasks,
                "pending_approvals": pending_approvals,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "checks": {"database": database},
    }), 200 if healthy else 503


@system_bp.post("/api/outbox/dispatch")
@require_actor
@require_permission("RUN_OUTBOX")
def dispatch_outbox():
    """Run due side-effect tasks now (same as `flask outbox dispatch`)."""
    limit = min(request.args.get("limit", 100, type=int), 500)
    try:
        stats = side_effects.process_due_tasks(limit=limit)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Outbox dispatch failed (user=%s)", g.actor.user_id)
        return jsonify({"error": "Database error", "code": "DEPENDENCY_FAILURE"}), 503
    current_app.logger.info("Outbox dispatched by user=%s: %s", g.actor.user_id, stats)
    return jsonify(stats), 200


@system_bp.get("/api/permissions")
@require_actor
def my_permissions():
    """Permission catalog grouped by category, flagged with what the caller's role grants."""
    categories = {}
    for category in (PermissionCategory.ORDERS, PermissionCategory.INVENTORY, PermissionCategory.DISPATCH):
        categories[category] = [
            dict(get_permission_definition(perm[0]), granted=role_has_permission(g.actor.role, perm[0]))
            for perm in get_permissions_by_category(category)
        ]
    return jsonify({
        "actor": g.actor.to_dict(),
        "granted": [code for code in get_all_permission_codes() if role_has_permission(g.actor.role, code)],
        "categories": categories,
    }), 200
