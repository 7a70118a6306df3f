from __future__ import annotations

from ..extensions import db
from storeledger.time_utils import to_utc_z, to_iso_date


INSTALLMENT_STATUS_ACTIVE = "active"
INSTALLMENT_STATUS_COMPLETED = "completed"
INSTALLMENT_STATUS_CANCELED = "canceled"

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PAID = "paid"


class InstallmentSale(db.Model):
    """
    Installment sale header carrying the accepted amortization plan.

    financed_total is the granularity-rounded price plus simple interest;
    remaining debt after the down payment is spread over period_count rows in
    installment_payments.
    """
    __tablename__ = "installment_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    sale_price = db.Column(db.BigInteger, nullable=False)
    discount = db.Column(db.BigInteger, nullable=False, default=0)
    down_payment = db.Column(db.BigInteger, nullable=False, default=0)
    monthly_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    financed_total = db.Column(db.BigInteger, nullable=False)
    period_count = db.Column(db.Integer, nullable=False)
    period_amount = db.Column(db.BigInteger, nullable=False)
    tolerance = db.Column(db.BigInteger, nullable=False)
    tolerance_overridden = db.Column(db.Boolean, nullable=False, default=False)

    start_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=INSTALLMENT_STATUS_ACTIVE, index=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("installment_sales", lazy=True))
    lines = db.relationship("InstallmentSaleLine", backref="sale", lazy=True, order_by="InstallmentSaleLine.id")
    payments = db.relationship(
        "InstallmentPayment",
        backref="sale",
        lazy=True,
        order_by="InstallmentPayment.installment_number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding(self) -> int:
        """Sum of unpaid periods; what the customer still owes on this sale."""
        if self.status == INSTALLMENT_STATUS_CANCELED:
            return 0
        return sum(p.amount_due for p in self.payments if p.status == PAYMENT_STATUS_UNPAID)

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_price": self.sale_price,
            "discount": self.discount,
            "down_payment": self.down_payment,
            "monthly_rate_bps": self.monthly_rate_bps,
            "financed_total": self.financed_total,
            "period_count": self.period_count,
            "period_amount": self.period_amount,
            "tolerance": self.tolerance,
            "tolerance_overridden": self.tolerance_overridden,
            "outstanding": self.outstanding,
            "start_date": to_iso_date(self.start_date),
            "status": self.status,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InstallmentSaleLine(db.Model):
    __tablename__ = "installment_sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    installment_sale_id = db.Column(db.Integer, db.ForeignKey("installment_sales.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=False, default="")
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    total_price = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


class InstallmentPayment(db.Model):
    """One scheduled period with its own paid/unpaid status."""
    __tablename__ = "installment_payments"
    __table_args__ = (
        db.UniqueConstraint("installment_sale_id", "installment_number", name="uq_installment_payments_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    installment_sale_id = db.Column(db.Integer, db.ForeignKey("installment_sales.id"), nullable=False, index=True)

    installment_number = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    amount_due = db.Column(db.BigInteger, nullable=False)
    paid_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "installment_sale_id": self.installment_sale_id,
            "installment_number": self.installment_number,
            "due_date": to_iso_date(self.due_date),
            "amount_due": self.amount_due,
            "paid_date": to_iso_date(self.paid_date),
            "status": self.status,
        }
