# Overview: Service-layer operations for the customer ledger; append-only writes and balance reads.

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CustomerLedgerEntry
from ..errors import NotFoundError, ValidationError
from .concurrency import UnitOfWork, lock_for_update
"""
Customer Ledger Invariants (authoritative)

- Append-only: no update or delete path exists; corrections are new rows.
- balance_n = balance_(n-1) + debit_n - credit_n, in append order.
- entry_date never decreases within a customer, so date order is append order.
- Debit increases what the customer owes; credit decreases it.
- Entries are written inside the same DB transaction as the document event
  they record.
- As-of reads are inclusive: entry_date <= as_of. No rows -> balance 0.
"""


def _latest_entry(session, customer_id: int) -> CustomerLedgerEntry | None:
    return (
        session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.id.desc())
        .first()
    )


def append_entry(
    uow: UnitOfWork,
    *,
    customer_id: int,
    description: str,
    debit: int = 0,
    credit: int = 0,
    entry_date: Optional[datetime] = None,
    order_id: int | None = None,
    installment_sale_id: int | None = None,
) -> CustomerLedgerEntry:
    """
    Append one immutable ledger row and return it (flushed, id assigned).

    The customer row is locked so concurrent appends serialize on it and the
    running balance cannot fork.
    """
    debit = int(debit or 0)
    credit = int(credit or 0)
    if debit < 0 or credit < 0:
        raise ValidationError("Ledger amounts must be non-negative")
    if debit == 0 and credit == 0:
        raise ValidationError("Ledger entry needs a debit or a credit")

    customer = lock_for_update(uow.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})

    previous = _latest_entry(uow.session, customer_id)
    previous_balance = previous.balance if previous else 0

    entry_date = entry_date or uow.started_at
    # Date order must follow append order or as-of reads pick the wrong row
    if previous is not None and entry_date < previous.entry_date:
        raise ValidationError(
            "Ledger entry cannot be dated before the customer's latest entry",
            details={"entry_date": entry_date.isoformat(), "latest_entry_date": previous.entry_date.isoformat()},
        )

    entry = CustomerLedgerEntry(
        customer_id=customer_id,
        entry_date=entry_date,
        description=description,
        debit=debit,
        credit=credit,
        balance=previous_balance + debit - credit,
        order_id=order_id,
        installment_sale_id=installment_sale_id,
    )
    uow.add(entry)
    uow.flush()  # ensures entry.id is assigned without committing
    return entry


def _as_of_bound(as_of: date | datetime | None) -> datetime | None:
    if as_of is None:
        return None
    if isinstance(as_of, datetime):
        return as_of
    # A bare date covers the whole day
    return datetime.combine(as_of, time.max)


def balance_as_of(customer_id: int, as_of: date | datetime | None = None) -> int:
    """
    Running balance of the latest entry at or before `as_of`.

    Returns 0 when the customer has no entries in range (including unknown
    customers); never raises for missing data.
    """
    q = db.session.query(CustomerLedgerEntry).filter_by(customer_id=customer_id)
    bound = _as_of_bound(as_of)
    if bound is not None:
        q = q.filter(CustomerLedgerEntry.entry_date <= bound)

    entry = q.order_by(
        CustomerLedgerEntry.entry_date.desc(),
        CustomerLedgerEntry.id.desc(),
    ).first()
    return int(entry.balance) if entry else 0


def list_entries(customer_id: int, *, limit: int = 100) -> list[CustomerLedgerEntry]:
    limit = max(1, min(int(limit), 500))
    return (
        db.session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.id.asc())
        .limit(limit)
        .all()
    )


def credits_for_order(session, order_id: int) -> int:
    """Total already credited back against one order (returns, cancel)."""
    total = session.query(
        func.coalesce(func.sum(CustomerLedgerEntry.credit), 0)
    ).filter(CustomerLedgerEntry.order_id == order_id).scalar()
    return int(total or 0)
