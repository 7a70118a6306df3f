from datetime import date

import pytest

from storeledger.errors import InsufficientStockError, InvalidTransitionError, ValidationError
from storeledger.models import StockStatus, TrackedUnit, Product
from storeledger.services import inventory_service
from storeledger.services.concurrency import unit_of_work
from storeledger.validation import LineDraft


def test_transition_table():
    assert inventory_service.can_transition(StockStatus.IN_STOCK, StockStatus.SOLD)
    assert inventory_service.can_transition(StockStatus.RETURNED, StockStatus.SOLD)
    assert inventory_service.can_transition(StockStatus.RETURNED_INSTALLMENT, StockStatus.SOLD)
    assert inventory_service.can_transition(StockStatus.SOLD, StockStatus.RETURNED)
    assert inventory_service.can_transition(StockStatus.SOLD, StockStatus.RETURNED_INSTALLMENT)

    assert not inventory_service.can_transition(StockStatus.SOLD, StockStatus.IN_STOCK)
    assert not inventory_service.can_transition(StockStatus.IN_STOCK, StockStatus.RETURNED)
    assert not inventory_service.can_transition(StockStatus.SOLD, StockStatus.SOLD)


def test_sell_then_return_keeps_dates_consistent(db_session, phone):
    with unit_of_work() as uow:
        unit = inventory_service.sell_unit(uow, phone.id, date(2024, 3, 1))
        assert unit.sale_date == date(2024, 3, 1)
        assert unit.return_date is None

    with unit_of_work() as uow:
        unit = inventory_service.return_unit(uow, phone.id, date(2024, 3, 5))

    unit = db_session.get(TrackedUnit, phone.id)
    assert unit.status == StockStatus.RETURNED.value
    assert unit.sale_date is None
    assert unit.return_date == date(2024, 3, 5)

    # A returned unit can be sold again; return_date is cleared
    with unit_of_work() as uow:
        inventory_service.sell_unit(uow, phone.id, date(2024, 3, 9))
    unit = db_session.get(TrackedUnit, phone.id)
    assert unit.status == StockStatus.SOLD.value
    assert unit.return_date is None
    assert unit.sale_date == date(2024, 3, 9)


def test_returning_unsold_unit_is_invalid(db_session, phone):
    with pytest.raises(InvalidTransitionError) as exc_info:
        with unit_of_work() as uow:
            inventory_service.return_unit(uow, phone.id, date(2024, 3, 5))

    assert isinstance(exc_info.value, ValidationError)
    assert db_session.get(TrackedUnit, phone.id).status == StockStatus.IN_STOCK.value


def test_selling_sold_unit_is_insufficient_stock(db_session, phone):
    with unit_of_work() as uow:
        inventory_service.sell_unit(uow, phone.id, date(2024, 3, 1))

    with pytest.raises(InsufficientStockError) as exc_info:
        with unit_of_work() as uow:
            inventory_service.sell_unit(uow, phone.id, date(2024, 3, 2))

    assert exc_info.value.item_id == phone.id
    assert exc_info.value.details["status"] == "sold"


def test_product_decrement_cannot_go_negative(db_session, charger):
    with pytest.raises(InsufficientStockError) as exc_info:
        with unit_of_work() as uow:
            inventory_service.decrement_product(uow, charger.id, 6)

    assert exc_info.value.details["on_hand"] == 5
    product = db_session.get(Product, charger.id)
    assert product.stock_quantity == 5
    assert product.sale_count == 0


def test_increment_floors_sale_count(db_session, charger):
    with unit_of_work() as uow:
        inventory_service.increment_product(uow, charger.id, 2)

    product = db_session.get(Product, charger.id)
    assert product.stock_quantity == 7
    assert product.sale_count == 0


def test_check_lines_sums_quantities_per_product(db_session, charger):
    lines = [
        LineDraft(item_type="product", item_id=charger.id, quantity=3, unit_price=50_000),
        LineDraft(item_type="product", item_id=charger.id, quantity=3, unit_price=50_000),
    ]

    with pytest.raises(InsufficientStockError):
        with unit_of_work() as uow:
            inventory_service.check_lines_available(uow, lines)


def test_unknown_unit_is_not_available(db_session):
    with pytest.raises(InsufficientStockError) as exc_info:
        with unit_of_work() as uow:
            inventory_service.ensure_unit_sellable(uow, 999)

    assert exc_info.value.details["reason"] == "not_found"
