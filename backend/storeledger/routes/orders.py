# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

"""
Sales Order API Routes

DESIGN:
- Create orders atomically (stock, ledger and document in one transaction)
- Preview totals without writing anything
- Soft-cancel with reversing effects
- Partial returns against active orders
- Reconcile stored totals against a fresh calculation

Domain errors map to their own status codes (400/404/409/503); anything
else is logged and returned as a 500.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import StoreLedgerError, ValidationError
from ..services import order_service
from ..validation import parse_order_payload, parse_return_payload
from storeledger.time_utils import parse_iso_date


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    data = order.to_dict()
    data["lines"] = [line.to_dict() for line in order.lines]
    return data


# =============================================================================
# CREATION
# =============================================================================

@orders_bp.post("")
def create_order_route():
    """
    Create an active sales order.

    Request body:
    {
        "customer_id": 7,            (required for credit)
        "payment_method": "credit",  ("cash" | "credit")
        "items": [
            {"item_type": "tracked_unit", "item_id": 3, "quantity": 1, "unit_price": 9000000},
            {"item_type": "product", "item_id": 5, "quantity": 2, "unit_price": 50000}
        ],
        "discount": 0,
        "tax_percent": 9,
        "transaction_date": "2024-03-01",
        "notes": "..."
    }

    Returns:
        201: Order created
        400: Invalid input
        404: Customer not found
        409: Item not available
        503: Store busy, retry
    """
    try:
        draft = parse_order_payload(request.get_json(silent=True))
        order = order_service.create_order(draft)
        return jsonify({"order": _order_payload(order)}), 201

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/preview")
def preview_order_route():
    """Totals an order would get. Nothing is written."""
    try:
        draft = parse_order_payload(request.get_json(silent=True))
        summary = order_service.preview_order(draft)
        return jsonify({"summary": summary.to_dict()}), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to preview order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
def list_orders_route():
    try:
        start = parse_iso_date(request.args.get("start_date"))
        end = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 dates"}), 400

    limit = request.args.get("limit", default=100, type=int)
    orders = order_service.list_orders(
        status=request.args.get("status"),
        start=start,
        end=end,
        limit=limit,
    )
    return jsonify({"items": [o.to_dict() for o in orders], "limit": max(1, min(limit, 500))}), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code

    data = _order_payload(order)
    data["returns"] = [r.to_dict() for r in order.returns]
    return jsonify({"order": data}), 200


@orders_bp.get("/<int:order_id>/reconcile")
def reconcile_order_route(order_id: int):
    try:
        report = order_service.reconcile_order(order_id)
        return jsonify(report), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reconcile order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CANCEL / RETURNS
# =============================================================================

@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    """
    Cancel an active order.

    Request body (optional):
    {
        "reason": "Customer changed their mind"
    }

    Returns:
        200: Order canceled, reversing effects posted
        404: Order not found or already canceled
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")

        order = order_service.cancel_order(order_id, reason=reason)
        return jsonify({"order": order.to_dict()}), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/returns")
def create_return_route(order_id: int):
    """
    Return part of an order.

    Request body:
    {
        "items": [{"item_type": "product", "item_id": 5, "quantity": 1}],
        "refund_amount": 50000,
        "reason": "Damaged"
    }
    """
    try:
        draft = parse_return_payload(request.get_json(silent=True))
        sales_return = order_service.create_return(order_id, draft)
        return jsonify({"return": sales_return.to_dict()}), 201

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500
