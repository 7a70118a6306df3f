"""
Boundary parsing: loosely-typed JSON payloads -> strict internal drafts.

Nothing downstream of these functions sees raw request data. Every draft is a
frozen dataclass whose money fields are plain ints and whose percentages are
already converted to basis points.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models.sales import ITEM_TYPES, ITEM_TRACKED_UNIT, ITEM_SERVICE, PAYMENT_CASH, PAYMENT_CREDIT
from storeledger.time_utils import parse_iso_date


# Upper bound for any single money field (10^15 currency units)
MAX_AMOUNT = 10 ** 15
MAX_PERCENT = Decimal("100")
MAX_INSTALLMENT_PERIODS = 120


@dataclass(frozen=True)
class LineDraft:
    item_type: str
    item_id: int | None
    quantity: int
    unit_price: int
    discount_per_item: int = 0
    description: str = ""


@dataclass(frozen=True)
class OrderDraft:
    customer_id: int | None
    payment_method: str
    lines: tuple[LineDraft, ...]
    discount: int = 0
    tax_rate_bps: int = 0
    transaction_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReturnItemDraft:
    item_type: str
    item_id: int | None
    quantity: int


@dataclass(frozen=True)
class ReturnDraft:
    items: tuple[ReturnItemDraft, ...]
    refund_amount: int = 0
    reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PlanRequest:
    price: int
    periods: int | None
    period_amount: int | None
    monthly_rate_bps: int
    down_payment: int
    override: bool = False


@dataclass(frozen=True)
class InstallmentSaleDraft:
    customer_id: int
    lines: tuple[LineDraft, ...]
    discount: int
    down_payment: int
    monthly_rate_bps: int
    periods: int | None
    period_amount: int | None
    start_date: date | None
    override: bool = False
    notes: str | None = None


# =============================================================================
# SCALAR COERCION
# =============================================================================

def coerce_int(name: str, value: Any, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings; rejects bools, floats, decimals and
    scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip().replace(",", "")
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{name} must be an integer, not a decimal")
        result = int(value)
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} must be <= {maximum}")
    return result


def coerce_amount(name: str, value: Any, *, default: int | None = 0) -> int:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{name} is required")
        return default
    return coerce_int(name, value, minimum=0, maximum=MAX_AMOUNT)


def percent_to_bps(name: str, value: Any) -> int:
    """'9' / 9 / 9.5 -> 900 / 900 / 950 basis points."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        pct = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")
    if not pct.is_finite() or pct < 0 or pct > MAX_PERCENT:
        raise ValidationError(f"{name} must be between 0 and {MAX_PERCENT}")
    bps = pct * 100
    if bps != bps.to_integral_value():
        raise ValidationError(f"{name} supports at most two decimal places")
    return int(bps)


def _coerce_date(name: str, value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


def coerce_bool(name: str, value: Any, *, default: bool = False) -> bool:
    """Real JSON booleans, or the strings "true"/"false"; anything else is rejected."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{name} must be true or false", details={name: value})


def _coerce_optional_id(name: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(name, value, minimum=1)


def _coerce_text(value: Any, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    if max_length is not None:
        s = s[:max_length]
    return s or None


def _require_dict(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


# =============================================================================
# LINES
# =============================================================================

def parse_line(raw: Any, index: int) -> LineDraft:
    label = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{label} is invalid")

    item_type = str(raw.get("item_type") or "").strip()
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"{label}.item_type must be one of {', '.join(ITEM_TYPES)}")

    item_id = _coerce_optional_id(f"{label}.item_id", raw.get("item_id"))
    if item_id is None and item_type != ITEM_SERVICE:
        raise ValidationError(f"{label}.item_id is required for {item_type}")

    quantity = coerce_int(f"{label}.quantity", raw.get("quantity", 1), minimum=1)
    if item_type == ITEM_TRACKED_UNIT and quantity != 1:
        raise ValidationError(f"{label}.quantity must be 1 for a tracked unit")

    return LineDraft(
        item_type=item_type,
        item_id=item_id,
        quantity=quantity,
        unit_price=coerce_amount(f"{label}.unit_price", raw.get("unit_price"), default=None),
        discount_per_item=coerce_amount(f"{label}.discount_per_item", raw.get("discount_per_item")),
        description=_coerce_text(raw.get("description"), 255) or "",
    )


def parse_lines(raw_items: Any) -> tuple[LineDraft, ...]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one line")
    lines = tuple(parse_line(raw, i) for i, raw in enumerate(raw_items))

    seen_units = set()
    for line in lines:
        if line.item_type == ITEM_TRACKED_UNIT:
            if line.item_id in seen_units:
                raise ValidationError(f"Tracked unit {line.item_id} appears more than once")
            seen_units.add(line.item_id)
    return lines


# =============================================================================
# DOCUMENT PAYLOADS
# =============================================================================

def parse_order_payload(payload: Any) -> OrderDraft:
    data = _require_dict(payload)

    payment_method = str(data.get("payment_method") or PAYMENT_CASH).strip()
    if payment_method not in (PAYMENT_CASH, PAYMENT_CREDIT):
        raise ValidationError("payment_method must be 'cash' or 'credit'")

    customer_id = _coerce_optional_id("customer_id", data.get("customer_id"))
    if payment_method == PAYMENT_CREDIT and customer_id is None:
        raise ValidationError("customer_id is required for credit orders")

    return OrderDraft(
        customer_id=customer_id,
        payment_method=payment_method,
        lines=parse_lines(data.get("items")),
        discount=coerce_amount("discount", data.get("discount")),
        tax_rate_bps=percent_to_bps("tax_percent", data.get("tax_percent")),
        transaction_date=_coerce_date("transaction_date", data.get("transaction_date")),
        notes=_coerce_text(data.get("notes")),
    )


def parse_return_payload(payload: Any) -> ReturnDraft:
    data = _require_dict(payload)
    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Return must contain at least one item")

    items = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] is invalid")
        item_type = str(raw.get("item_type") or "").strip()
        if item_type not in ITEM_TYPES:
            raise ValidationError(f"items[{i}].item_type must be one of {', '.join(ITEM_TYPES)}")
        items.append(ReturnItemDraft(
            item_type=item_type,
            item_id=_coerce_optional_id(f"items[{i}].item_id", raw.get("item_id")),
            quantity=coerce_int(f"items[{i}].quantity", raw.get("quantity"), minimum=1),
        ))

    return ReturnDraft(
        items=tuple(items),
        refund_amount=coerce_amount("refund_amount", data.get("refund_amount")),
        reason=_coerce_text(data.get("reason"), 255),
        notes=_coerce_text(data.get("notes")),
    )


def _parse_schedule_terms(data: dict) -> tuple[int | None, int | None]:
    periods = data.get("periods")
    period_amount = data.get("period_amount")
    periods = None if periods in (None, "") else coerce_int(
        "periods", periods, minimum=1, maximum=MAX_INSTALLMENT_PERIODS,
    )
    period_amount = None if period_amount in (None, "") else coerce_int(
        "period_amount", period_amount, minimum=1, maximum=MAX_AMOUNT,
    )
    if periods is None and period_amount is None:
        raise ValidationError("Either periods or period_amount is required")
    return periods, period_amount


def parse_plan_payload(payload: Any) -> PlanRequest:
    data = _require_dict(payload)
    periods, period_amount = _parse_schedule_terms(data)
    return PlanRequest(
        price=coerce_amount("price", data.get("price"), default=None),
        periods=periods,
        period_amount=period_amount,
        monthly_rate_bps=percent_to_bps("monthly_rate_percent", data.get("monthly_rate_percent")),
        down_payment=coerce_amount("down_payment", data.get("down_payment")),
        override=coerce_bool("override", data.get("override")),
    )


def parse_installment_sale_payload(payload: Any) -> InstallmentSaleDraft:
    data = _require_dict(payload)
    customer_id = _coerce_optional_id("customer_id", data.get("customer_id"))
    if customer_id is None:
        raise ValidationError("customer_id is required for installment sales")

    periods, period_amount = _parse_schedule_terms(data)
    return InstallmentSaleDraft(
        customer_id=customer_id,
        lines=parse_lines(data.get("items")),
        discount=coerce_amount("discount", data.get("discount")),
        down_payment=coerce_amount("down_payment", data.get("down_payment")),
        monthly_rate_bps=percent_to_bps("monthly_rate_percent", data.get("monthly_rate_percent")),
        periods=periods,
        period_amount=period_amount,
        start_date=_coerce_date("start_date", data.get("start_date")),
        override=coerce_bool("override", data.get("override")),
        notes=_coerce_text(data.get("notes")),
    )
