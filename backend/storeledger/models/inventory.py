from __future__ import annotations

import enum

from ..extensions import db
from storeledger.time_utils import to_utc_z, to_iso_date


class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    SOLD = "sold"
    RETURNED = "returned"
    RETURNED_INSTALLMENT = "returned_installment"


class TrackedUnit(db.Model):
    """
    A uniquely identified stock unit (one phone, one IMEI).

    Status is never written directly by routes; every change goes through
    inventory_service.transition_unit, which enforces the transition table.

    DATE INVARIANTS:
    - sale_date is set only while status == sold
    - return_date is set only while status in (returned, returned_installment)
    """
    __tablename__ = "tracked_units"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('in_stock', 'sold', 'returned', 'returned_installment')",
            name="ck_tracked_units_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    model = db.Column(db.String(255), nullable=False)
    imei = db.Column(db.String(32), nullable=False, unique=True)

    purchase_price = db.Column(db.BigInteger, nullable=False, default=0)
    sale_price = db.Column(db.BigInteger, nullable=True)

    status = db.Column(db.String(32), nullable=False, default=StockStatus.IN_STOCK.value, index=True)
    sale_date = db.Column(db.Date, nullable=True)
    return_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<TrackedUnit id={self.id} imei={self.imei!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "model": self.model,
            "imei": self.imei,
            "purchase_price": self.purchase_price,
            "sale_price": self.sale_price,
            "status": self.status,
            "sale_date": to_iso_date(self.sale_date),
            "return_date": to_iso_date(self.return_date),
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Fungible stock (accessories, chargers, cases).

    stock_quantity is a mutable counter guarded by a CHECK constraint; the
    service layer rejects a decrement that would go negative before any write.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    purchase_price = db.Column(db.BigInteger, nullable=False, default=0)
    sale_price = db.Column(db.BigInteger, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    sale_count = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "purchase_price": self.purchase_price,
            "sale_price": self.sale_price,
            "stock_quantity": self.stock_quantity,
            "sale_count": self.sale_count,
            "created_at": to_utc_z(self.created_at),
        }
