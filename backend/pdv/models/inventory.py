from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount, quantity_to_json
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Minimal catalog row backing the default stock ledger.

    Catalog maintenance lives elsewhere; this service only reads the price
    and moves stock_quantity through the stock ledger.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=True, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # No floor here: negative stock is a catalog concern
    stock_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "price": cents_to_amount(self.price_cents),
            "stock_quantity": quantity_to_json(self.stock_quantity),
        }


class ProductLot(db.Model):
    """Lot-level quantity for a product (lote)."""
    __tablename__ = "product_lots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_number", name="uq_product_lots_product_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    expires_on = db.Column(db.Date, nullable=True)

    product = db.relationship("Product", backref=db.backref("lots", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_number": self.lot_number,
            "quantity": quantity_to_json(self.quantity),
            "expires_on": self.expires_on.isoformat() if self.expires_on else None,
        }


RECONCILIATION_PENDING = "pending"
RECONCILIATION_APPLIED = "applied"
# Decrement never applied and the sale was cancelled since
RECONCILIATION_VOIDED = "voided"

DIRECTION_DECREMENT = "decrement"
DIRECTION_INCREMENT = "increment"


class StockReconciliation(db.Model):
    """
    Durable marker for a stock ledger call that failed after the financial
    record was committed.

    Written in the same transaction as the sale change it belongs to, then
    replayed by retry_pending_reconciliations().
    """
    __tablename__ = "stock_reconciliations"
    __table_args__ = (
        db.Index("ix_stock_reconciliations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True)

    direction = db.Column(db.String(16), nullable=False)  # decrement, increment
    product_id = db.Column(db.Integer, nullable=False)
    lot_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)

    # Which ledger calls are still owed for this item
    product_pending = db.Column(db.Boolean, nullable=False, default=True)
    lot_pending = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(16), nullable=False, default=RECONCILIATION_PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=1)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "direction": self.direction,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "quantity": quantity_to_json(self.quantity),
            "product_pending": self.product_pending,
            "lot_pending": self.lot_pending,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
