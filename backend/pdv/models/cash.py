from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..time_utils import to_utc_z

MOVEMENT_WITHDRAWAL = "sangria"
MOVEMENT_DEPOSIT = "suprimento"
MOVEMENT_TYPES = (MOVEMENT_WITHDRAWAL, MOVEMENT_DEPOSIT)


class CashSession(db.Model):
    """
    Cash drawer session (abertura de caixa).

    LIFECYCLE:
    - open (is_active=True): accepts sales and movements
    - closed (is_active=False): counted, difference recorded, terminal

    At most one row may have is_active=True. The partial unique index
    below is what enforces it; the service-level check only produces a
    friendlier error.

    The expected balance is never cached while the session is open. The
    expected_cents/sales_total_cents/difference_cents columns are the
    snapshot taken at close.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Opening
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    initial_cents = db.Column(db.Integer, nullable=False, default=0)
    opening_notes = db.Column(db.Text, nullable=True)

    # Closing
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    counted_cents = db.Column(db.Integer, nullable=True)
    sales_total_cents = db.Column(db.Integer, nullable=True)
    expected_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected
    closing_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "is_active": self.is_active,
            "status": "aberto" if self.is_active else "fechado",
            "opened_at": to_utc_z(self.opened_at),
            "opened_by_user_id": self.opened_by_user_id,
            "initial_amount": cents_to_amount(self.initial_cents),
            "opening_notes": self.opening_notes,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_user_id": self.closed_by_user_id,
            "counted_amount": cents_to_amount(self.counted_cents),
            "sales_total": cents_to_amount(self.sales_total_cents),
            "expected_balance": cents_to_amount(self.expected_cents),
            "difference": cents_to_amount(self.difference_cents),
            "closing_notes": self.closing_notes,
        }


db.Index(
    "uq_cash_sessions_single_active",
    CashSession.is_active,
    unique=True,
    sqlite_where=CashSession.is_active.is_(True),
    postgresql_where=CashSession.is_active.is_(True),
)


class CashMovement(db.Model):
    """
    Manual cash withdrawal (sangria) or deposit (suprimento).

    IMMUTABLE: no update or delete path. Corrections are new offsetting
    movements.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_occurred", "cash_session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)  # sangria, suprimento
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cash_session = db.relationship("CashSession", backref=db.backref("movements", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_session_id": self.cash_session_id,
            "type": self.movement_type,
            "amount": cents_to_amount(self.amount_cents),
            "description": self.description,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
