from .customers import Customer
from .inventory import StockStatus, TrackedUnit, Product
from .sales import SalesOrder, SalesOrderLine, SalesReturn, SalesReturnLine
from .ledger import CustomerLedgerEntry, LedgerImmutableError
from .installments import InstallmentSale, InstallmentSaleLine, InstallmentPayment
from .settings import Setting

__all__ = [
    'Customer',
    'StockStatus', 'TrackedUnit', 'Product',
    'SalesOrder', 'SalesOrderLine', 'SalesReturn', 'SalesReturnLine',
    'CustomerLedgerEntry', 'LedgerImmutableError',
    'InstallmentSale', 'InstallmentSaleLine', 'InstallmentPayment',
    'Setting',
]
