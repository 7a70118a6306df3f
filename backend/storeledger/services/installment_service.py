"""
Installment Service - amortization plan and installment sale lifecycle

PLAN RULES (simple, non-compounding monthly interest):
- principal       = max(0, price - down_payment)
- total_interest  = principal * monthly_rate * periods
- financed_total  = round_up(price + total_interest, G)
- remaining       = financed_total - down_payment
- period_amount   = ceil(remaining / periods)        (never falls short)
- periods         = ceil(remaining / period_amount)  (when the amount is fixed)
- tolerance       = max(floor, round_up(remaining * 1%, G))
- accepted iff |periods * period_amount - remaining| <= tolerance

G (granularity) and the floor come from settings_service.get_money_rules().
A tolerance breach is advisory: callers may resubmit with override=True.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date

from ..extensions import db
from ..models import (
    Customer,
    InstallmentSale,
    InstallmentSaleLine,
    InstallmentPayment,
    StockStatus,
)
from ..models.installments import (
    INSTALLMENT_STATUS_ACTIVE,
    INSTALLMENT_STATUS_COMPLETED,
    INSTALLMENT_STATUS_CANCELED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
)
from ..models.sales import ITEM_TRACKED_UNIT, ITEM_PRODUCT
from ..errors import InvalidTransitionError, NotFoundError, ToleranceExceededError, ValidationError
from ..validation import InstallmentSaleDraft, MAX_INSTALLMENT_PERIODS
from storeledger.time_utils import add_months
from . import inventory_service, ledger_service
from .calculations import BPS_DENOMINATOR, calculate_sales_summary, ceil_div, line_total, round_up
from .concurrency import UnitOfWork, lock_for_update, run_with_retry, unit_of_work
from .settings_service import MoneyRules, get_money_rules


# 1% of the remaining debt, in basis points
DYNAMIC_TOLERANCE_BPS = 100


@dataclass(frozen=True)
class InstallmentPlan:
    price: int
    down_payment: int
    principal: int
    monthly_rate_bps: int
    total_interest: int
    financed_total: int
    remaining: int
    period_count: int
    period_amount: int
    installments_total: int
    tolerance: int
    within_tolerance: bool

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# AMORTIZATION ENGINE (pure)
# =============================================================================

def financed_total_for(price: int, down_payment: int, monthly_rate_bps: int, periods: int, granularity: int) -> int:
    """round_up(price + principal * rate * periods, G), in exact integer math."""
    principal = max(0, price - down_payment)
    # Scale by the bps denominator so the interest never gets truncated
    # before rounding up to the granularity.
    scaled = price * BPS_DENOMINATOR + principal * monthly_rate_bps * periods
    return round_up(ceil_div(scaled, BPS_DENOMINATOR), granularity)


def tolerance_for(remaining: int, granularity: int, floor: int) -> int:
    dynamic = ceil_div(max(0, remaining) * DYNAMIC_TOLERANCE_BPS, BPS_DENOMINATOR)
    return max(floor, round_up(dynamic, granularity))


def _periods_for_amount(
    price: int,
    down_payment: int,
    monthly_rate_bps: int,
    period_amount: int,
    granularity: int,
) -> int:
    """
    Smallest period count whose schedule covers the debt it produces.

    More periods mean more interest, so the count is iterated to a fixed
    point; it only ever grows and is capped at MAX_INSTALLMENT_PERIODS.
    """
    periods = 1
    while True:
        remaining = financed_total_for(price, down_payment, monthly_rate_bps, periods, granularity) - down_payment
        needed = max(1, ceil_div(remaining, period_amount))
        if needed <= periods:
            return periods
        if needed > MAX_INSTALLMENT_PERIODS:
            raise ValidationError(
                f"period_amount {period_amount} cannot cover the debt within {MAX_INSTALLMENT_PERIODS} periods",
                details={"period_amount": period_amount, "max_periods": MAX_INSTALLMENT_PERIODS},
            )
        periods = needed


def compute_installment_plan(
    price: int,
    *,
    periods: int | None = None,
    period_amount: int | None = None,
    monthly_rate_bps: int = 0,
    down_payment: int = 0,
    granularity: int,
    tolerance_floor: int,
    override: bool = False,
) -> InstallmentPlan:
    """
    Build a per-period plan for a sale price.

    Give `periods` to derive the period amount, `period_amount` to derive the
    period count, or both to check a hand-entered schedule.

    Raises:
        ValidationError: malformed terms
        ToleranceExceededError: schedule drifts past the tolerance and
            override is False
    """
    if price <= 0:
        raise ValidationError("price must be positive")
    if down_payment < 0 or down_payment > price:
        raise ValidationError("down_payment must be between 0 and price")
    if monthly_rate_bps < 0:
        raise ValidationError("monthly rate must be non-negative")
    if periods is None and period_amount is None:
        raise ValidationError("Either periods or period_amount is required")
    if periods is not None and (isinstance(periods, bool) or not isinstance(periods, int) or periods <= 0):
        raise ValidationError("periods must be a positive integer")
    if period_amount is not None and period_amount <= 0:
        raise ValidationError("period_amount must be positive")

    if granularity <= 0:
        raise ValidationError("granularity must be positive")
    if periods is None:
        periods = _periods_for_amount(price, down_payment, monthly_rate_bps, period_amount, granularity)

    principal = max(0, price - down_payment)
    financed_total = financed_total_for(price, down_payment, monthly_rate_bps, periods, granularity)
    remaining = financed_total - down_payment

    if period_amount is None:
        period_amount = ceil_div(remaining, periods)

    installments_total = periods * period_amount
    tolerance = tolerance_for(remaining, granularity, tolerance_floor)
    within = abs(installments_total - remaining) <= tolerance
    if not within and not override:
        raise ToleranceExceededError(total=installments_total, remaining=remaining, tolerance=tolerance)

    return InstallmentPlan(
        price=price,
        down_payment=down_payment,
        principal=principal,
        monthly_rate_bps=monthly_rate_bps,
        total_interest=ceil_div(principal * monthly_rate_bps * periods, BPS_DENOMINATOR),
        financed_total=financed_total,
        remaining=remaining,
        period_count=periods,
        period_amount=period_amount,
        installments_total=installments_total,
        tolerance=tolerance,
        within_tolerance=within,
    )


def build_schedule(plan: InstallmentPlan, start_date: date) -> list[tuple[int, date, int]]:
    """(installment_number, due_date, amount_due), one per month from start_date."""
    return [
        (number, add_months(start_date, number - 1), plan.period_amount)
        for number in range(1, plan.period_count + 1)
    ]


# =============================================================================
# INSTALLMENT SALES
# =============================================================================

def _create_installment_sale_locked(uow: UnitOfWork, draft: InstallmentSaleDraft, rules: MoneyRules) -> InstallmentSale:
    if uow.session.get(Customer, draft.customer_id) is None:
        raise NotFoundError(f"Customer {draft.customer_id} not found", details={"customer_id": draft.customer_id})

    inventory_service.check_lines_available(uow, draft.lines)

    summary = calculate_sales_summary(draft.lines, draft.discount, 0)
    plan = compute_installment_plan(
        summary.grand_total,
        periods=draft.periods,
        period_amount=draft.period_amount,
        monthly_rate_bps=draft.monthly_rate_bps,
        down_payment=draft.down_payment,
        granularity=rules.granularity,
        tolerance_floor=rules.tolerance_floor,
        override=draft.override,
    )
    sale_date = uow.started_at.date()
    start_date = draft.start_date or add_months(sale_date, 1)

    sale = uow.add(InstallmentSale(
        customer_id=draft.customer_id,
        sale_price=plan.price,
        discount=summary.global_discount + summary.items_discount,
        down_payment=plan.down_payment,
        monthly_rate_bps=plan.monthly_rate_bps,
        financed_total=plan.financed_total,
        period_count=plan.period_count,
        period_amount=plan.period_amount,
        tolerance=plan.tolerance,
        tolerance_overridden=not plan.within_tolerance,
        start_date=start_date,
        status=INSTALLMENT_STATUS_ACTIVE,
        notes=draft.notes,
    ))
    uow.flush()

    for line in draft.lines:
        uow.add(InstallmentSaleLine(
            installment_sale_id=sale.id,
            item_type=line.item_type,
            item_id=line.item_id,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line_total(line),
        ))

    for number, due_date, amount in build_schedule(plan, start_date):
        uow.add(InstallmentPayment(
            installment_sale_id=sale.id,
            installment_number=number,
            due_date=due_date,
            amount_due=amount,
            status=PAYMENT_STATUS_UNPAID,
        ))

    inventory_service.apply_sale(uow, draft.lines, sale_date)

    # The debt is what the schedule collects, so a fully paid sale nets to zero.
    ledger_service.append_entry(
        uow,
        customer_id=sale.customer_id,
        description=f"Installment sale #{sale.id}",
        debit=plan.down_payment + plan.installments_total,
        installment_sale_id=sale.id,
    )
    if plan.down_payment > 0:
        ledger_service.append_entry(
            uow,
            customer_id=sale.customer_id,
            description=f"Down payment for installment sale #{sale.id}",
            credit=plan.down_payment,
            installment_sale_id=sale.id,
        )

    uow.flush()
    return sale


def create_installment_sale(draft: InstallmentSaleDraft) -> InstallmentSale:
    """
    Sell on installments: stock moves, plan + schedule rows, and the debt
    posted to the customer ledger, all in one transaction.
    """
    if not draft.lines:
        raise ValidationError("Installment sale must contain at least one line")
    rules = get_money_rules()

    def _op():
        with unit_of_work() as uow:
            return _create_installment_sale_locked(uow, draft, rules)

    return run_with_retry(_op)


def _record_payment_locked(uow: UnitOfWork, payment_id: int, paid_date: date | None) -> InstallmentPayment:
    payment = lock_for_update(uow.session.query(InstallmentPayment).filter_by(id=payment_id)).first()
    if payment is None:
        raise NotFoundError(f"Installment payment {payment_id} not found")

    sale = lock_for_update(uow.session.query(InstallmentSale).filter_by(id=payment.installment_sale_id)).first()
    if sale.status != INSTALLMENT_STATUS_ACTIVE:
        raise ValidationError(f"Installment sale {sale.id} is {sale.status}")
    if payment.status == PAYMENT_STATUS_PAID:
        raise ValidationError(f"Installment {payment.installment_number} is already paid")

    payment.status = PAYMENT_STATUS_PAID
    payment.paid_date = paid_date or uow.started_at.date()

    ledger_service.append_entry(
        uow,
        customer_id=sale.customer_id,
        description=f"Installment {payment.installment_number} of sale #{sale.id}",
        credit=payment.amount_due,
        installment_sale_id=sale.id,
    )

    uow.flush()
    unpaid = (
        uow.session.query(InstallmentPayment)
        .filter_by(installment_sale_id=sale.id, status=PAYMENT_STATUS_UNPAID)
        .count()
    )
    if unpaid == 0:
        sale.status = INSTALLMENT_STATUS_COMPLETED
    return payment


def record_installment_payment(payment_id: int, paid_date: date | None = None) -> InstallmentPayment:
    def _op():
        with unit_of_work() as uow:
            return _record_payment_locked(uow, payment_id, paid_date)

    return run_with_retry(_op)


def _cancel_installment_sale_locked(uow: UnitOfWork, sale_id: int) -> InstallmentSale:
    sale = lock_for_update(uow.session.query(InstallmentSale).filter_by(id=sale_id)).first()
    if sale is None or sale.status == INSTALLMENT_STATUS_CANCELED:
        raise NotFoundError(f"Installment sale {sale_id} not found", details={"installment_sale_id": sale_id})
    if sale.status != INSTALLMENT_STATUS_ACTIVE:
        raise InvalidTransitionError(
            f"Installment sale {sale_id} is {sale.status}",
            details={"installment_sale_id": sale_id, "status": sale.status},
        )

    return_date = uow.started_at.date()
    for line in sale.lines:
        if line.item_type == ITEM_TRACKED_UNIT:
            inventory_service.return_unit(
                uow, line.item_id, return_date, target=StockStatus.RETURNED_INSTALLMENT,
            )
        elif line.item_type == ITEM_PRODUCT:
            inventory_service.increment_product(uow, line.item_id, line.quantity)

    outstanding = sale.outstanding
    if outstanding > 0:
        ledger_service.append_entry(
            uow,
            customer_id=sale.customer_id,
            description=f"Cancel installment sale #{sale.id}",
            credit=outstanding,
            installment_sale_id=sale.id,
        )

    sale.status = INSTALLMENT_STATUS_CANCELED
    sale.canceled_at = uow.started_at
    uow.flush()
    return sale


def cancel_installment_sale(sale_id: int) -> InstallmentSale:
    """
    Cancel an installment sale: units go to returned_installment, stock comes
    back, and the unpaid debt is reversed with a credit row.
    """
    def _op():
        with unit_of_work() as uow:
            return _cancel_installment_sale_locked(uow, sale_id)

    return run_with_retry(_op)


def get_installment_sale(sale_id: int) -> InstallmentSale:
    sale = db.session.get(InstallmentSale, sale_id)
    if sale is None:
        raise NotFoundError(f"Installment sale {sale_id} not found")
    return sale
