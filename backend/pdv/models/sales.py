from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount, quantity_to_json
from ..time_utils import to_utc_z

SALE_STATUS_DRAFT = "rascunho"
SALE_STATUS_FINALIZED = "finalizada"
SALE_STATUS_CANCELLED = "cancelada"
SALE_STATUSES = (SALE_STATUS_DRAFT, SALE_STATUS_FINALIZED, SALE_STATUS_CANCELLED)

# English names accepted on input
SALE_STATUS_ALIASES = {
    "draft": SALE_STATUS_DRAFT,
    "finalized": SALE_STATUS_FINALIZED,
    "cancelled": SALE_STATUS_CANCELLED,
    "canceled": SALE_STATUS_CANCELLED,
}

PAYMENT_STATUS_PENDING = "pendente"
PAYMENT_STATUS_PARTIAL = "parcial"
PAYMENT_STATUS_PAID = "pago"
PAYMENT_STATUS_CANCELLED = "cancelado"


class Sale(db.Model):
    """
    Sale header (venda).

    LIFECYCLE:
    - rascunho: created with its items, nothing committed to stock
    - finalizada: payments reconciled and recorded, stock decremented
    - cancelada: terminal; stock reversed if it had been finalized

    Bound to exactly one cash session at creation time.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Zero-padded, strictly increasing (e.g. "000123")
    sale_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    # Customer snapshot (freeform when no registered customer)
    customer_id = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_document = db.Column(db.String(32), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    # Amounts (cents); total = subtotal - discount
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_DRAFT, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_session = db.relationship("CashSession", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "SalePayment",
        backref="sale",
        lazy=True,
        order_by="SalePayment.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "cash_session_id": self.cash_session_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_document": self.customer_document,
            "customer_phone": self.customer_phone,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "discount_amount": cents_to_amount(self.discount_cents),
            "discount_percent": float(self.discount_percent or 0),
            "total": cents_to_amount(self.total_cents),
            "change": cents_to_amount(self.change_cents),
            "status": self.status,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
        }
        if include_children:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    Product code and name are snapshots taken at sale time so history stays
    accurate if the catalog changes later.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_code = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    lot_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity": quantity_to_json(self.quantity),
            "unit_price": cents_to_amount(self.unit_price_cents),
            "line_total": cents_to_amount(self.line_total_cents),
            "lot_id": self.lot_id,
        }


class SalePayment(db.Model):
    """
    One tender applied to a finalized sale.

    Created only at finalization; never updated afterwards.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    card_brand = db.Column(db.String(64), nullable=True)
    authorization_code = db.Column(db.String(128), nullable=True)
    transaction_code = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount": cents_to_amount(self.amount_cents),
            "card_brand": self.card_brand,
            "authorization_code": self.authorization_code,
            "transaction_code": self.transaction_code,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
        }
