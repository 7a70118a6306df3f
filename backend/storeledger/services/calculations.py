# Overview: Pure order-total calculations shared by creation, preview and reconciliation.

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Iterable, Protocol


BPS_DENOMINATOR = 10_000


class PricedLine(Protocol):
    quantity: int
    unit_price: int
    discount_per_item: int


@dataclass(frozen=True)
class SalesSummary:
    subtotal: int
    items_discount: int
    global_discount: int
    taxable_amount: int
    tax_rate_bps: int
    tax_amount: int
    grand_total: int

    def to_dict(self) -> dict:
        return asdict(self)


def apply_bps(amount: int, rate_bps: int) -> int:
    """amount * rate, rounded half-up to a whole currency unit."""
    if amount <= 0 or rate_bps <= 0:
        return 0
    return (amount * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def round_up(amount: int, granularity: int) -> int:
    """Round a non-negative amount up to the next multiple of granularity."""
    if granularity <= 1:
        return amount
    return ceil_div(amount, granularity) * granularity


def line_total(line: PricedLine) -> int:
    return int(line.quantity) * int(line.unit_price)


def calculate_sales_summary(
    lines: Iterable[PricedLine],
    global_discount: int = 0,
    tax_rate_bps: int = 0,
) -> SalesSummary:
    """
    Compute the financial summary for a sales order.

    - subtotal = sum(quantity * unit_price)
    - items_discount = sum(discount_per_item)
    - taxable_amount = max(0, subtotal - items_discount - global_discount)
    - tax_amount = taxable_amount * tax rate, half-up to a whole unit
    - grand_total = taxable_amount + tax_amount

    This is the only place order totals are computed. Lines must already be
    validated (see validation.parse_order_payload).
    """
    lines = list(lines)
    subtotal = sum(line_total(line) for line in lines)
    items_discount = sum(int(line.discount_per_item or 0) for line in lines)

    # Taxable base cannot go negative
    taxable_amount = max(0, subtotal - items_discount - int(global_discount or 0))
    tax_amount = apply_bps(taxable_amount, int(tax_rate_bps or 0))

    return SalesSummary(
        subtotal=subtotal,
        items_discount=items_discount,
        global_discount=int(global_discount or 0),
        taxable_amount=taxable_amount,
        tax_rate_bps=int(tax_rate_bps or 0),
        tax_amount=tax_amount,
        grand_total=taxable_amount + tax_amount,
    )
