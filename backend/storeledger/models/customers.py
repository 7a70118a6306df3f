from __future__ import annotations

from ..extensions import db
from storeledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer reference data.

    The core only needs existence lookups and a row to lock while a ledger
    entry is appended; everything else about customers lives elsewhere.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    phone_number = db.Column(db.String(32), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} full_name={self.full_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "created_at": to_utc_z(self.created_at),
        }
