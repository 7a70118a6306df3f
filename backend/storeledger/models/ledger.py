from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from storeledger.time_utils import to_utc_z


class CustomerLedgerEntry(db.Model):
    """
    Append-only customer debt ledger.

    balance_n = balance_(n-1) + debit_n - credit_n; debit increases what the
    customer owes. Rows are never updated or deleted: corrections are new
    reversing rows. order_id / installment_sale_id are informational and carry
    no cascading deletes, so history outlives the documents it refers to.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_customer_ledger_customer_date", "customer_id", "entry_date", "id"),
        db.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_customer_ledger_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    debit = db.Column(db.BigInteger, nullable=False, default=0)
    credit = db.Column(db.BigInteger, nullable=False, default=0)
    balance = db.Column(db.BigInteger, nullable=False)

    order_id = db.Column(db.Integer, nullable=True, index=True)
    installment_sale_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_date": to_utc_z(self.entry_date),
            "description": self.description,
            "debit": self.debit,
            "credit": self.credit,
            "balance": self.balance,
            "order_id": self.order_id,
            "installment_sale_id": self.installment_sale_id,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerImmutableError(RuntimeError):
    pass


@event.listens_for(CustomerLedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is immutable; post a reversing entry instead")


@event.listens_for(CustomerLedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} cannot be deleted")
