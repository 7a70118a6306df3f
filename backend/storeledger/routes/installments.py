# Overview: Flask API routes for installment plans and installment sales.

from flask import Blueprint, request, jsonify, current_app

from ..errors import StoreLedgerError
from ..services import installment_service
from ..services.settings_service import get_money_rules
from ..validation import parse_plan_payload, parse_installment_sale_payload
from storeledger.time_utils import parse_iso_date


installments_bp = Blueprint("installments", __name__, url_prefix="/api/installments")


@installments_bp.post("/plan")
def compute_plan_route():
    """
    Compute an installment plan without saving it.

    Request body:
    {
        "price": 12000000,
        "down_payment": 2000000,
        "monthly_rate_percent": 2,
        "periods": 12,             (or "period_amount", or both)
        "override": false
    }

    Returns:
        200: Plan
        400: Invalid input
        422: Installments drift past the tolerance (resubmit with override)
    """
    try:
        req = parse_plan_payload(request.get_json(silent=True))
        rules = get_money_rules()
        plan = installment_service.compute_installment_plan(
            req.price,
            periods=req.periods,
            period_amount=req.period_amount,
            monthly_rate_bps=req.monthly_rate_bps,
            down_payment=req.down_payment,
            granularity=rules.granularity,
            tolerance_floor=rules.tolerance_floor,
            override=req.override,
        )
        return jsonify({"plan": plan.to_dict()}), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute installment plan")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.post("")
def create_installment_sale_route():
    try:
        draft = parse_installment_sale_payload(request.get_json(silent=True))
        sale = installment_service.create_installment_sale(draft)
        return jsonify({"installment_sale": sale.to_dict(include_payments=True)}), 201

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create installment sale")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.get("/<int:sale_id>")
def get_installment_sale_route(sale_id: int):
    try:
        sale = installment_service.get_installment_sale(sale_id)
    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"installment_sale": sale.to_dict(include_payments=True)}), 200


@installments_bp.post("/<int:sale_id>/cancel")
def cancel_installment_sale_route(sale_id: int):
    try:
        sale = installment_service.cancel_installment_sale(sale_id)
        return jsonify({"installment_sale": sale.to_dict(include_payments=True)}), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel installment sale")
        return jsonify({"error": "Internal server error"}), 500


@installments_bp.post("/payments/<int:payment_id>/pay")
def pay_installment_route(payment_id: int):
    """
    Mark one scheduled period as paid.

    Request body (optional):
    {
        "paid_date": "2024-04-01"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        paid_date = parse_iso_date(data.get("paid_date"))
    except (TypeError, ValueError, AttributeError):
        return jsonify({"error": "paid_date must be an ISO-8601 date"}), 400

    try:
        payment = installment_service.record_installment_payment(payment_id, paid_date)
        return jsonify({"payment": payment.to_dict()}), 200

    except StoreLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record installment payment")
        return jsonify({"error": "Internal server error"}), 500
