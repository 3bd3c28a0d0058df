# Overview: Flask API routes for the stock ledger and its approval pipeline.

"""
Inventory Transaction API Routes

- Record purchases, purchase returns, damage and adjustments
- Maker-checker approval: approve / reject pending transactions
- Void approved transactions (stock reversed)
- Purchase invoice search with remaining returnable quantities
- Return pre-check against a purchase

Approve, reject and void also require a privileged role (PRIVILEGED_ROLES);
the service enforces it independently of the permission map.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import DomainError, ValidationError, error_response
from ..services import approval_service, ledger_service, return_guard
from ..decorators import require_actor, require_permission
from ..validation import parse_pagination, require_json_object


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


# =============================================================================
# TRANSACTIONS
# =============================================================================

@inventory_bp.post("/transactions")
@require_actor
@require_permission("RECORD_INVENTORY")
def create_transaction_route():
    """
    Record a ledger transaction.

    Request body:
    {
        "transaction_type": "purchase_return",
        "vendor_id": 3,
        "invoice_no": "V-7781",                (vendor's own number, optional)
        "reference_transaction_id": 12,        (purchase_return only)
        "items": [{"variant_id": 1, "quantity": 5, "unit_cost": 400}],
        "reason": "Damaged in transit",
        "notes": "...",
        "transaction_date": "2026-01-31"       (purchases only)
    }

    Returns:
        201: {transaction} with requires_approval
        400: VALIDATION_ERROR
        404: NOT_FOUND (variant / vendor / reference)
        409: INSUFFICIENT_STOCK
        422: RETURN_QUANTITY_EXCEEDED with per-item violations
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        metadata = {
            key: data.get(key)
            for key in ("vendor_id", "invoice_no", "reference_transaction_id", "reason", "notes", "transaction_date")
        }
        tx = ledger_service.record_transaction(
            data.get("transaction_type"),
            data.get("items"),
            metadata,
            g.actor,
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record inventory transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/transactions")
@require_actor
@require_permission("VIEW_INVENTORY")
def list_transactions_route():
    try:
        limit, offset = parse_pagination(request.args)
        vendor_id = request.args.get("vendor_id", type=int)
        rows, total = ledger_service.list_transactions(
            transaction_type=request.args.get("transaction_type"),
            status=request.args.get("status"),
            vendor_id=vendor_id,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "transactions": [tx.to_dict(include_items=False) for tx in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory transactions")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/transactions/<int:transaction_id>")
@require_actor
@require_permission("VIEW_INVENTORY")
def get_transaction_route(transaction_id: int):
    try:
        tx = ledger_service.get_transaction(transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inventory transaction")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@inventory_bp.get("/transactions/pending")
@require_actor
@require_permission("APPROVE_INVENTORY")
def pending_transactions_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = approval_service.list_pending(
            transaction_type=request.args.get("transaction_type"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "transactions": [tx.to_dict() for tx in rows],
            "total": total,
        }), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pending transactions")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transactions/<int:transaction_id>/approve")
@require_actor
@require_permission("APPROVE_INVENTORY")
def approve_transaction_route(transaction_id: int):
    """
    Approve a pending transaction (applies stock).

    Returns:
        200: Approved
        403: Not privileged, or approving your own transaction
        409: Not pending anymore / insufficient stock
        422: Purchase return now exceeds the returnable maximum
    """
    try:
        tx = approval_service.approve(transaction_id, g.actor)
        return jsonify({"transaction": tx.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transactions/<int:transaction_id>/reject")
@require_actor
@require_permission("APPROVE_INVENTORY")
def reject_transaction_route(transaction_id: int):
    """Request body: {"reason": "Counted again, no damage found"}"""
    try:
        data = require_json_object(request.get_json(silent=True) or {})
        tx = approval_service.reject(
            transaction_id, g.actor, data.get("reason") or data.get("rejection_reason")
        )
        return jsonify({"transaction": tx.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transactions/<int:transaction_id>/void")
@require_actor
@require_permission("APPROVE_INVENTORY")
def void_transaction_route(transaction_id: int):
    """Request body: {"reason": "Entered against the wrong vendor"}"""
    try:
        data = require_json_object(request.get_json(silent=True) or {})
        tx = approval_service.void(transaction_id, g.actor, data.get("reason"))
        return jsonify({"transaction": tx.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/approval-stats")
@require_actor
@require_permission("APPROVE_INVENTORY")
def approval_stats_route():
    try:
        days = request.args.get("days", 30, type=int)
        if days < 1:
            raise ValidationError("days must be positive")
        return jsonify(approval_service.approval_stats(days=days)), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute approval stats")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURNS SUPPORT
# =============================================================================

@inventory_bp.get("/purchases/search")
@require_actor
@require_permission("VIEW_INVENTORY")
def search_purchases_route():
    """?q=PUR-0001&vendor_id=3 -> approved purchases with remaining_returnable per item."""
    try:
        results = ledger_service.search_purchase_invoices(
            query=request.args.get("q"),
            vendor_id=request.args.get("vendor_id", type=int),
            limit=min(request.args.get("limit", 20, type=int), 100),
        )
        return jsonify({"purchases": results}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search purchases")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/returns/validate")
@require_actor
@require_permission("RECORD_INVENTORY")
def validate_return_route():
    """
    Pre-check a purchase return without recording it.

    Request body: {"reference_transaction_id": 12, "items": [{"variant_id": 1, "quantity": 5}]}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        reference_id = data.get("reference_transaction_id")
        items = data.get("items")
        if reference_id is None or not isinstance(items, list) or not items:
            raise ValidationError("reference_transaction_id and items are required")
        result = return_guard.validate_return(int(reference_id), items, claim=False)
        return jsonify(result.to_dict()), 200

    except DomainError as e:
        return error_response(e)
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "items need integer variant_id and quantity", "code": "VALIDATION_ERROR"}), 400
    except Exception:
        current_app.logger.exception("Failed to validate return")
        return jsonify({"error": "Internal server error"}), 500
