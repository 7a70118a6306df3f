# Overview: Flask API routes for customer ledger reads; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import ledger_service
from storeledger.time_utils import parse_iso_date, parse_iso_datetime, to_iso_date, to_utc_z

"""
Time semantics:
- as_of accepts a date ("2024-03-01", end of that day) or an ISO-8601
  datetime with Z/offset; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: entry_date <= as_of.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/customers")


def _parse_as_of(raw: str | None):
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if len(raw) <= 10:
        return parse_iso_date(raw)
    return parse_iso_datetime(raw)


@ledger_bp.get("/<int:customer_id>/ledger")
def list_ledger_route(customer_id: int):
    limit = request.args.get("limit", default=100, type=int)
    rows = ledger_service.list_entries(customer_id, limit=limit)
    return jsonify({
        "customer_id": customer_id,
        "items": [r.to_dict() for r in rows],
        "limit": max(1, min(limit, 500)),
    }), 200


@ledger_bp.get("/<int:customer_id>/balance")
def balance_route(customer_id: int):
    try:
        as_of = _parse_as_of(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "as_of must be an ISO-8601 date or datetime"}), 400

    balance = ledger_service.balance_as_of(customer_id, as_of)
    if as_of is None:
        as_of_out = None
    elif hasattr(as_of, "hour"):
        as_of_out = to_utc_z(as_of)
    else:
        as_of_out = to_iso_date(as_of)
    return jsonify({"customer_id": customer_id, "as_of": as_of_out, "balance": balance}), 200
