# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

- Create orders (intake)
- Status transitions through the workflow rules engine
- Fulfillment type correction before packing
- Bulk status updates
- Workflow info and activity timeline for the UI

Every rejected transition answers with a machine-readable `code`
(INVALID_TRANSITION, ACCESS_DENIED, MISSING_REQUIRED_FIELD, ...) plus
`locked_by` / `requires` where they apply.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import DomainError, error_response
from ..services import order_service, workflow_rules
from ..decorators import require_actor, require_permission
from ..validation import normalize_transition_fields, parse_status_request, require_json_object


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
@require_actor
@require_permission("CREATE_ORDER")
def create_order_route():
    """
    Create an order in intake.

    Request body:
    {
        "customer_name": "Sita Sharma",
        "customer_phone": "98xxxxxxxx",
        "fulfillment_type": "inside_valley",   (aliases accepted)
        "items": [{"variant_id": 1, "quantity": 2, "unit_price": 1200}]
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        order = order_service.create_order(data, g.actor)
        return jsonify({"order": order.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/my-deliveries")
@require_actor
@require_permission("DELIVER_ORDERS")
def my_deliveries_route():
    """Orders the calling rider is currently responsible for."""
    try:
        orders = order_service.list_rider_orders(g.actor.rider_id)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list rider deliveries")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
@require_permission("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "workflow": workflow_rules.get_workflow_info(order, g.actor),
        }), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/workflow")
@require_actor
@require_permission("VIEW_ORDERS")
def order_workflow_route(order_id: int):
    """Allowed next statuses, lock state and transition requirements for the caller."""
    try:
        order = order_service.get_order(order_id)
        return jsonify(workflow_rules.get_workflow_info(order, g.actor)), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order workflow info")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/timeline")
@require_actor
@require_permission("VIEW_ORDERS")
def order_timeline_route(order_id: int):
    try:
        entries = order_service.get_order_timeline(order_id)
        return jsonify({"timeline": [e.to_dict() for e in entries]}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order timeline")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_actor
@require_permission("UPDATE_ORDER_STATUS")
def update_status_route(order_id: int):
    """
    Request a status transition.

    Request body:
    {
        "status": "handover_to_courier",
        "courier_partner": "Pathao",
        "awb_number": "PTH-123"        (alias of courier_tracking_id)
    }

    Returns:
        200: {order, old_status, new_status, changed, inventory, warnings}
        400: MISSING_REQUIRED_FIELD / VALIDATION_ERROR
        403: ACCESS_DENIED (with locked_by when another actor holds the order)
        409: CONFLICT / RIDER_UNAVAILABLE / INSUFFICIENT_STOCK
        422: INVALID_TRANSITION
    """
    try:
        status, fields = parse_status_request(request.get_json(silent=True))
        outcome = order_service.transition(order_id, status, g.actor, fields)
        return jsonify(outcome.to_dict()), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/fulfillment-type")
@require_actor
@require_permission("EDIT_ORDER")
def change_fulfillment_type_route(order_id: int):
    """Request body: {"fulfillment_type": "outside_valley"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        order = order_service.change_fulfillment_type(order_id, data.get("fulfillment_type"), g.actor)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change fulfillment type")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/bulk-status")
@require_actor
@require_permission("BULK_UPDATE_ORDERS")
def bulk_status_route():
    """
    Apply one transition to many orders.

    Request body: {"order_ids": [1, 2, 3], "status": "packed", ...fields}
    Each order succeeds or fails independently; see `results`.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        status, fields = parse_status_request(data)
        summary = order_service.bulk_transition(data.get("order_ids"), status, g.actor, fields)
        return jsonify(summary), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update orders")
        return jsonify({"error": "Internal server error"}), 500
