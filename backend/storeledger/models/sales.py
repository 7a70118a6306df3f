from __future__ import annotations

from ..extensions import db
from storeledger.time_utils import to_utc_z, to_iso_date


ORDER_STATUS_ACTIVE = "active"
ORDER_STATUS_CANCELED = "canceled"

PAYMENT_CASH = "cash"
PAYMENT_CREDIT = "credit"

ITEM_TRACKED_UNIT = "tracked_unit"
ITEM_PRODUCT = "product"
ITEM_SERVICE = "service"
ITEM_TYPES = (ITEM_TRACKED_UNIT, ITEM_PRODUCT, ITEM_SERVICE)


class SalesOrder(db.Model):
    """
    Multi-line sales order header.

    Totals are a snapshot of calculations.calculate_sales_summary at creation
    time. Cancelation is a soft flag: the header and its lines stay for audit,
    reversing stock and ledger effects are posted as new rows.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.Index("ix_sales_orders_status_date", "status", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Walk-in customers have no customer row
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)

    discount = db.Column(db.BigInteger, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    items_discount = db.Column(db.BigInteger, nullable=False, default=0)
    tax_amount = db.Column(db.BigInteger, nullable=False, default=0)
    grand_total = db.Column(db.BigInteger, nullable=False, default=0)

    transaction_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_ACTIVE, server_default=ORDER_STATUS_ACTIVE)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    customer = db.relationship("Customer", backref=db.backref("sales_orders", lazy=True))
    lines = db.relationship(
        "SalesOrderLine",
        backref="order",
        lazy=True,
        order_by="SalesOrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit(self) -> bool:
        return self.payment_method == PAYMENT_CREDIT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "payment_method": self.payment_method,
            "discount": self.discount,
            "tax_rate_bps": self.tax_rate_bps,
            "subtotal": self.subtotal,
            "items_discount": self.items_discount,
            "tax_amount": self.tax_amount,
            "grand_total": self.grand_total,
            "transaction_date": to_iso_date(self.transaction_date),
            "notes": self.notes,
            "status": self.status,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class SalesOrderLine(db.Model):
    __tablename__ = "sales_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    # Services are not stock items and carry no id
    item_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=False, default="")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    discount_per_item = db.Column(db.BigInteger, nullable=False, default=0)
    # quantity * unit_price; per-line discounts are summarised on the header
    total_price = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount_per_item": self.discount_per_item,
            "total_price": self.total_price,
        }


class SalesReturn(db.Model):
    """
    Partial return against an active order.

    Quantities returned here are excluded when the order is later canceled.
    """
    __tablename__ = "sales_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    refund_amount = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("SalesOrder", backref=db.backref("returns", lazy=True))
    lines = db.relationship("SalesReturnLine", backref="sales_return", lazy=True, order_by="SalesReturnLine.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "reason": self.reason,
            "notes": self.notes,
            "refund_amount": self.refund_amount,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SalesReturnLine(db.Model):
    __tablename__ = "sales_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=False, default="")
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    line_total = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }
