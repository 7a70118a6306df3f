"""
Order Lifecycle Service - atomic create/cancel of multi-line sales orders

WHY: A sale touches three records at once: stock, customer debt and the
order document. Each operation below runs in one unit of work so callers
either see all of its effects or none of them.

CANCEL SEMANTICS:
- Soft cancel: the header is flagged (status, canceled_at, cancel_reason);
  lines stay for audit.
- Tracked units go sold -> returned, never straight back to in_stock.
- Customer debt is reversed with a new credit row; the original debit row is
  never touched.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Customer, SalesOrder, SalesOrderLine, SalesReturn, SalesReturnLine
from ..models.sales import (
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_CANCELED,
    ITEM_TRACKED_UNIT,
    ITEM_PRODUCT,
)
from ..errors import NotFoundError, ValidationError
from ..validation import OrderDraft, ReturnDraft
from . import inventory_service, ledger_service
from .calculations import SalesSummary, calculate_sales_summary, line_total
from .concurrency import UnitOfWork, lock_for_update, run_with_retry, unit_of_work


# =============================================================================
# PREVIEW / RECONCILE
# =============================================================================

def preview_order(draft: OrderDraft) -> SalesSummary:
    """Totals the order would get, without touching the store."""
    if not draft.lines:
        raise ValidationError("Order must contain at least one line")
    return calculate_sales_summary(draft.lines, draft.discount, draft.tax_rate_bps)


def reconcile_order(order_id: int) -> dict:
    """
    Recompute an order's totals from its stored lines and report any drift
    against the stored header.
    """
    order = db.session.get(SalesOrder, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    summary = calculate_sales_summary(order.lines, order.discount, order.tax_rate_bps)
    stored = {
        "subtotal": order.subtotal,
        "items_discount": order.items_discount,
        "tax_amount": order.tax_amount,
        "grand_total": order.grand_total,
    }
    computed = summary.to_dict()
    drift = {
        key: computed[key] - value
        for key, value in stored.items()
        if computed[key] != value
    }
    line_drift = [
        line.id for line in order.lines if line.total_price != line_total(line)
    ]
    return {
        "order_id": order.id,
        "stored": stored,
        "computed": computed,
        "drift": drift,
        "lines_with_drift": line_drift,
        "consistent": not drift and not line_drift,
    }


# =============================================================================
# CREATE
# =============================================================================

def _require_customer(uow: UnitOfWork, customer_id: int) -> Customer:
    customer = uow.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def _create_order_locked(uow: UnitOfWork, draft: OrderDraft) -> SalesOrder:
    if draft.customer_id is not None:
        _require_customer(uow, draft.customer_id)

    # All availability checks happen before the first write
    inventory_service.check_lines_available(uow, draft.lines)

    summary = calculate_sales_summary(draft.lines, draft.discount, draft.tax_rate_bps)
    transaction_date = draft.transaction_date or uow.started_at.date()

    order = uow.add(SalesOrder(
        customer_id=draft.customer_id,
        payment_method=draft.payment_method,
        discount=summary.global_discount,
        tax_rate_bps=summary.tax_rate_bps,
        subtotal=summary.subtotal,
        items_discount=summary.items_discount,
        tax_amount=summary.tax_amount,
        grand_total=summary.grand_total,
        transaction_date=transaction_date,
        notes=draft.notes,
        status=ORDER_STATUS_ACTIVE,
    ))
    uow.flush()

    for line in draft.lines:
        uow.add(SalesOrderLine(
            order_id=order.id,
            item_type=line.item_type,
            item_id=line.item_id,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount_per_item=line.discount_per_item,
            total_price=line_total(line),
        ))

    inventory_service.apply_sale(uow, draft.lines, transaction_date)

    if order.is_credit and order.customer_id and summary.grand_total > 0:
        ledger_service.append_entry(
            uow,
            customer_id=order.customer_id,
            description=f"Credit sale invoice #{order.id}",
            debit=summary.grand_total,
            order_id=order.id,
        )

    uow.flush()
    return order


def create_order(draft: OrderDraft) -> SalesOrder:
    """
    Create an active order: header + lines, stock moves, and a debit ledger
    row for credit sales. All or nothing.

    Raises:
        ValidationError: empty or malformed draft
        NotFoundError: referenced customer does not exist
        InsufficientStockError: a line cannot be fulfilled
        LockTimeoutError: the store stayed locked past the retry budget
    """
    if not draft.lines:
        raise ValidationError("Order must contain at least one line")

    def _op():
        with unit_of_work() as uow:
            return _create_order_locked(uow, draft)

    return run_with_retry(_op)


# =============================================================================
# CANCEL
# =============================================================================

def _returned_quantities(session, order_id: int) -> dict[tuple[str, int | None], int]:
    rows = (
        session.query(SalesReturnLine)
        .join(SalesReturn, SalesReturn.id == SalesReturnLine.return_id)
        .filter(SalesReturn.order_id == order_id)
        .all()
    )
    returned: dict[tuple[str, int | None], int] = {}
    for row in rows:
        key = (row.item_type, row.item_id)
        returned[key] = returned.get(key, 0) + row.quantity
    return returned


def _cancel_order_locked(uow: UnitOfWork, order_id: int, reason: str | None) -> SalesOrder:
    # Existence is re-read under lock inside this transaction, so a second
    # cancel that queued behind the first observes the canceled header.
    order = lock_for_update(uow.session.query(SalesOrder).filter_by(id=order_id)).first()
    if order is None or order.status == ORDER_STATUS_CANCELED:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

    return_date = uow.started_at.date()
    already_returned = _returned_quantities(uow.session, order.id)

    for line in order.lines:
        key = (line.item_type, line.item_id)
        consumed = min(line.quantity, already_returned.get(key, 0))
        if consumed:
            already_returned[key] -= consumed
        remaining = line.quantity - consumed
        if remaining <= 0:
            continue

        if line.item_type == ITEM_TRACKED_UNIT:
            inventory_service.return_unit(uow, line.item_id, return_date)
        elif line.item_type == ITEM_PRODUCT:
            inventory_service.increment_product(uow, line.item_id, remaining)

    if order.is_credit and order.customer_id and order.grand_total > 0:
        outstanding = order.grand_total - ledger_service.credits_for_order(uow.session, order.id)
        if outstanding > 0:
            ledger_service.append_entry(
                uow,
                customer_id=order.customer_id,
                description=f"Cancel credit sale invoice #{order.id}",
                credit=outstanding,
                order_id=order.id,
            )

    order.status = ORDER_STATUS_CANCELED
    order.canceled_at = uow.started_at
    order.cancel_reason = reason
    uow.flush()
    return order


def cancel_order(order_id: int, reason: str | None = None) -> SalesOrder:
    """
    Cancel an active order and post every reversing effect.

    Raises:
        NotFoundError: order missing or already canceled
    """
    def _op():
        with unit_of_work() as uow:
            return _cancel_order_locked(uow, order_id, reason)

    return run_with_retry(_op)


# =============================================================================
# PARTIAL RETURNS
# =============================================================================

def _create_return_locked(uow: UnitOfWork, order_id: int, draft: ReturnDraft) -> SalesReturn:
    order = lock_for_update(uow.session.query(SalesOrder).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    if order.status == ORDER_STATUS_CANCELED:
        raise ValidationError(f"Order {order_id} is canceled")

    sold: dict[tuple[str, int | None], dict] = {}
    for line in order.lines:
        key = (line.item_type, line.item_id)
        entry = sold.setdefault(key, {"quantity": 0, "unit_price": line.unit_price, "description": line.description})
        entry["quantity"] += line.quantity

    already_returned = _returned_quantities(uow.session, order.id)
    requested: dict[tuple[str, int | None], int] = {}
    for item in draft.items:
        key = (item.item_type, item.item_id)
        if key not in sold:
            raise ValidationError(
                f"{item.item_type} {item.item_id} is not part of order {order_id}",
                details={"item_type": item.item_type, "item_id": item.item_id},
            )
        requested[key] = requested.get(key, 0) + item.quantity
        returnable = sold[key]["quantity"] - already_returned.get(key, 0)
        if requested[key] > returnable:
            raise ValidationError(
                f"Return quantity for {item.item_type} {item.item_id} exceeds returnable quantity",
                details={"requested": requested[key], "returnable": returnable},
            )

    refund_to_ledger = order.is_credit and order.customer_id and draft.refund_amount > 0
    if refund_to_ledger:
        outstanding = order.grand_total - ledger_service.credits_for_order(uow.session, order.id)
        if draft.refund_amount > outstanding:
            raise ValidationError(
                "Refund exceeds the outstanding amount of the order",
                details={"refund_amount": draft.refund_amount, "outstanding": outstanding},
            )

    sales_return = uow.add(SalesReturn(
        order_id=order.id,
        customer_id=order.customer_id,
        reason=draft.reason,
        notes=draft.notes,
        refund_amount=draft.refund_amount,
    ))
    uow.flush()

    return_date = uow.started_at.date()
    for item in draft.items:
        meta = sold[(item.item_type, item.item_id)]
        uow.add(SalesReturnLine(
            return_id=sales_return.id,
            item_type=item.item_type,
            item_id=item.item_id,
            description=meta["description"],
            quantity=item.quantity,
            unit_price=meta["unit_price"],
            line_total=meta["unit_price"] * item.quantity,
        ))
        if item.item_type == ITEM_TRACKED_UNIT:
            inventory_service.return_unit(uow, item.item_id, return_date)
        elif item.item_type == ITEM_PRODUCT:
            inventory_service.increment_product(uow, item.item_id, item.quantity)

    if refund_to_ledger:
        ledger_service.append_entry(
            uow,
            customer_id=order.customer_id,
            description=f"Return #{sales_return.id} on invoice #{order.id}",
            credit=draft.refund_amount,
            order_id=order.id,
        )

    uow.flush()
    return sales_return


def create_return(order_id: int, draft: ReturnDraft) -> SalesReturn:
    """
    Return part of an active order.

    Raises:
        NotFoundError: order missing
        ValidationError: canceled order, unknown item, or quantity/refund too large
    """
    if not draft.items:
        raise ValidationError("Return must contain at least one item")

    def _op():
        with unit_of_work() as uow:
            return _create_return_locked(uow, order_id, draft)

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int) -> SalesOrder:
    order = db.session.get(SalesOrder, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    status: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 100,
) -> list[SalesOrder]:
    q = db.session.query(SalesOrder)
    if status:
        q = q.filter(SalesOrder.status == status)
    if start is not None:
        q = q.filter(SalesOrder.transaction_date >= start)
    if end is not None:
        q = q.filter(SalesOrder.transaction_date <= end)
    limit = max(1, min(int(limit), 500))
    return q.order_by(SalesOrder.id.desc()).limit(limit).all()
