# Overview: Stock state machine for tracked units and quantity bookkeeping for products.

from __future__ import annotations

from datetime import date

from ..models import TrackedUnit, Product, StockStatus
from ..models.sales import ITEM_TRACKED_UNIT, ITEM_PRODUCT
from ..errors import InsufficientStockError, InvalidTransitionError, NotFoundError
from .concurrency import UnitOfWork, lock_for_update
"""
Inventory invariants (authoritative)

Tracked units:
- status is one of StockStatus; free-form writes are not allowed.
- Only transitions listed in ALLOWED_TRANSITIONS are performed.
- sale_date is set only while status == sold.
- return_date is set only while status in (returned, returned_installment),
  and is cleared when the unit is sold again.
- returned and returned_installment units are sellable.

Products:
- stock_quantity >= 0 at all times.
- A decrement that would go negative is rejected before the row is touched.
"""


SELLABLE_STATUSES = frozenset({
    StockStatus.IN_STOCK,
    StockStatus.RETURNED,
    StockStatus.RETURNED_INSTALLMENT,
})

ALLOWED_TRANSITIONS: dict[StockStatus, frozenset[StockStatus]] = {
    StockStatus.IN_STOCK: frozenset({StockStatus.SOLD}),
    StockStatus.RETURNED: frozenset({StockStatus.SOLD}),
    StockStatus.RETURNED_INSTALLMENT: frozenset({StockStatus.SOLD}),
    StockStatus.SOLD: frozenset({StockStatus.RETURNED, StockStatus.RETURNED_INSTALLMENT}),
}


def can_transition(current: StockStatus, target: StockStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_sellable(status) -> bool:
    return StockStatus(status) in SELLABLE_STATUSES


def get_unit_locked(uow: UnitOfWork, unit_id: int) -> TrackedUnit:
    unit = lock_for_update(uow.session.query(TrackedUnit).filter_by(id=unit_id)).first()
    if unit is None:
        raise NotFoundError(f"Tracked unit {unit_id} not found", details={"item_id": unit_id})
    return unit


def get_product_locked(uow: UnitOfWork, product_id: int) -> Product:
    product = lock_for_update(uow.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"item_id": product_id})
    return product


def transition_unit(unit: TrackedUnit, target: StockStatus, on_date: date) -> TrackedUnit:
    """
    Move a tracked unit along the transition table and keep its dates
    consistent with the new status.
    """
    current = StockStatus(unit.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Tracked unit {unit.id} cannot move from {current.value} to {target.value}",
            details={"item_id": unit.id, "from": current.value, "to": target.value},
        )

    unit.status = target.value
    if target is StockStatus.SOLD:
        unit.sale_date = on_date
        unit.return_date = None
    else:
        unit.sale_date = None
        unit.return_date = on_date
    return unit


def ensure_unit_sellable(uow: UnitOfWork, unit_id: int) -> TrackedUnit:
    try:
        unit = get_unit_locked(uow, unit_id)
    except NotFoundError:
        raise InsufficientStockError(
            f"Tracked unit {unit_id} is not available for sale",
            item_type=ITEM_TRACKED_UNIT,
            item_id=unit_id,
            details={"reason": "not_found"},
        )
    if not is_sellable(unit.status):
        raise InsufficientStockError(
            f"Tracked unit {unit_id} is not available for sale",
            item_type=ITEM_TRACKED_UNIT,
            item_id=unit_id,
            details={"status": unit.status},
        )
    return unit


def sell_unit(uow: UnitOfWork, unit_id: int, sale_date: date, sale_price: int | None = None) -> TrackedUnit:
    unit = ensure_unit_sellable(uow, unit_id)
    transition_unit(unit, StockStatus.SOLD, sale_date)
    if sale_price is not None:
        unit.sale_price = sale_price
    return unit


def return_unit(
    uow: UnitOfWork,
    unit_id: int,
    return_date: date,
    *,
    target: StockStatus = StockStatus.RETURNED,
) -> TrackedUnit:
    """sold -> returned (cash/credit sale) or sold -> returned_installment."""
    unit = get_unit_locked(uow, unit_id)
    return transition_unit(unit, target, return_date)


def ensure_product_available(uow: UnitOfWork, product_id: int, quantity: int) -> Product:
    try:
        product = get_product_locked(uow, product_id)
    except NotFoundError:
        raise InsufficientStockError(
            f"Product {product_id} not found",
            item_type=ITEM_PRODUCT,
            item_id=product_id,
            details={"reason": "not_found"},
        )
    if product.stock_quantity < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id}",
            item_type=ITEM_PRODUCT,
            item_id=product_id,
            details={"requested_quantity": quantity, "on_hand": product.stock_quantity},
        )
    return product


def decrement_product(uow: UnitOfWork, product_id: int, quantity: int) -> Product:
    product = ensure_product_available(uow, product_id, quantity)
    product.stock_quantity -= quantity
    product.sale_count = (product.sale_count or 0) + quantity
    return product


def increment_product(uow: UnitOfWork, product_id: int, quantity: int) -> Product:
    product = get_product_locked(uow, product_id)
    product.stock_quantity += quantity
    product.sale_count = max(0, (product.sale_count or 0) - quantity)
    return product


def check_lines_available(uow: UnitOfWork, lines) -> None:
    """
    Verify every stock line can be fulfilled before any side effect runs.

    Product quantities are summed per product so two lines for the same
    product cannot jointly oversell it.
    """
    product_totals: dict[int, int] = {}
    for line in lines:
        if line.item_type == ITEM_TRACKED_UNIT:
            ensure_unit_sellable(uow, line.item_id)
        elif line.item_type == ITEM_PRODUCT:
            product_totals[line.item_id] = product_totals.get(line.item_id, 0) + line.quantity

    for product_id, qty in product_totals.items():
        ensure_product_available(uow, product_id, qty)


def apply_sale(uow: UnitOfWork, lines, sale_date: date) -> None:
    """Apply stock effects of sold lines; services have none."""
    for line in lines:
        if line.item_type == ITEM_TRACKED_UNIT:
            sell_unit(uow, line.item_id, sale_date, sale_price=line.unit_price)
        elif line.item_type == ITEM_PRODUCT:
            decrement_product(uow, line.item_id, line.quantity)
