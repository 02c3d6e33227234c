"""
Cash Drawer Session Service

WHY: Cash accountability for the point of sale. One drawer session is open
at a time; every sale is bound to it and every manual cash movement is
recorded against it.

DESIGN PRINCIPLES:
- At most one active session system-wide, enforced by a partial unique
  index (uq_cash_sessions_single_active), not by process state
- Sessions are terminal once closed
- The expected balance is always derived from persisted facts:
  initial + finalized sales - withdrawals + deposits
- Closing never fails on a discrepancy; the difference is recorded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ServiceError
from ..extensions import db
from ..models import CashSession, CashMovement, Sale, SalePayment
from ..models.cash import MOVEMENT_DEPOSIT, MOVEMENT_TYPES, MOVEMENT_WITHDRAWAL
from ..models.sales import SALE_STATUS_CANCELLED, SALE_STATUS_FINALIZED
from ..money import cents_to_amount
from ..time_utils import utcnow
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


class CashSessionError(ServiceError):
    """Raised for cash session operation errors."""


class SessionAlreadyOpen(CashSessionError):
    pass


class SessionNotActive(CashSessionError):
    pass


class SessionNotFound(CashSessionError):
    status_code = 404


@dataclass(frozen=True)
class SessionBalance:
    """Derived balance of a session, in cents."""
    initial_cents: int
    sales_total_cents: int
    withdrawals_cents: int
    deposits_cents: int

    @property
    def expected_cents(self) -> int:
        return self.initial_cents + self.sales_total_cents - self.withdrawals_cents + self.deposits_cents

    def to_dict(self) -> dict:
        return {
            "initial_amount": cents_to_amount(self.initial_cents),
            "sales_total": cents_to_amount(self.sales_total_cents),
            "withdrawals_total": cents_to_amount(self.withdrawals_cents),
            "deposits_total": cents_to_amount(self.deposits_cents),
            "expected_balance": cents_to_amount(self.expected_cents),
        }


# =============================================================================
# LOOKUPS
# =============================================================================

def get_active_session(*, lock: bool = False) -> CashSession | None:
    """The currently open session, if any. lock=True holds its row until commit."""
    query = db.session.query(CashSession).filter(CashSession.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    return query.first()


def require_active_session(session_id: int | None = None, *, lock: bool = False) -> CashSession:
    """
    Load a session and make sure it is the active one.

    Raises SessionNotFound for an unknown id and SessionNotActive for a
    closed session.
    """
    query = db.session.query(CashSession)
    if session_id is None:
        query = query.filter(CashSession.is_active.is_(True))
    else:
        query = query.filter(CashSession.id == session_id)
    if lock:
        query = lock_for_update(query)

    session = query.first()
    if session is None and session_id is not None:
        raise SessionNotFound(f"Cash session {session_id} not found")
    if session is None or not session.is_active:
        raise SessionNotActive(
            "Cash session is not active",
            details={"session_id": session_id},
        )
    return session


def get_session(session_id: int) -> CashSession:
    session = db.session.get(CashSession, session_id)
    if not session:
        raise SessionNotFound(f"Cash session {session_id} not found")
    return session


# =============================================================================
# BALANCE
# =============================================================================

def compute_balance(session: CashSession) -> SessionBalance:
    """
    Derive the session balance from finalized sales and movements.

    Nothing here is cached: every call re-reads the persisted rows.
    """
    sales_total = db.session.query(
        func.coalesce(func.sum(Sale.total_cents), 0)
    ).filter(
        Sale.cash_session_id == session.id,
        Sale.status == SALE_STATUS_FINALIZED,
    ).scalar()

    movement_rows = db.session.query(
        CashMovement.movement_type,
        func.coalesce(func.sum(CashMovement.amount_cents), 0),
    ).filter(
        CashMovement.cash_session_id == session.id,
    ).group_by(CashMovement.movement_type).all()
    movement_totals = {movement_type: int(total) for movement_type, total in movement_rows}

    return SessionBalance(
        initial_cents=session.initial_cents,
        sales_total_cents=int(sales_total or 0),
        withdrawals_cents=movement_totals.get(MOVEMENT_WITHDRAWAL, 0),
        deposits_cents=movement_totals.get(MOVEMENT_DEPOSIT, 0),
    )


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_session(initial_cents: int, user_id: int, notes: str | None = None) -> CashSession:
    """
    Open the cash drawer.

    Raises:
        SessionAlreadyOpen: another session is active. Concurrent callers
        that both pass the pre-check are separated by the unique index: the
        loser's INSERT fails with IntegrityError and is reported the same way.
        IntegrityError: the INSERT failed for any other constraint.
    """
    if initial_cents < 0:
        raise CashSessionError("Initial amount must be >= 0")

    existing = get_active_session()
    if existing:
        raise SessionAlreadyOpen(
            f"A cash session is already open (session {existing.id}). Close it before opening a new one.",
            details={"session_id": existing.id},
        )

    session = CashSession(
        is_active=True,
        opened_by_user_id=user_id,
        initial_cents=initial_cents,
        opening_notes=notes,
        opened_at=utcnow(),
    )
    db.session.add(session)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner_id = db.session.query(CashSession.id).filter(CashSession.is_active.is_(True)).scalar()
        if winner_id is None:
            # Not the single-active index (e.g. unknown user)
            raise
        raise SessionAlreadyOpen(
            "A cash session is already open. Close it before opening a new one.",
            details={"session_id": winner_id},
        )

    logger.info("Cash session %s opened by user %s with %s", session.id, user_id, cents_to_amount(initial_cents))
    return session


def record_movement(
    session_id: int,
    movement_type: str,
    amount_cents: int,
    description: str,
    user_id: int,
) -> CashMovement:
    """
    Record a withdrawal (sangria) or deposit (suprimento).

    The session balance is not touched here; it is derived on read.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise CashSessionError(f"Invalid movement type: {movement_type}")
    if amount_cents <= 0:
        raise CashSessionError("Movement amount must be positive")
    if not description or not description.strip():
        raise CashSessionError("Movement description is required")

    session = require_active_session(session_id, lock=True)

    movement = CashMovement(
        cash_session_id=session.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        description=description.strip(),
        user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.commit()
    return movement


def close_session(
    session_id: int,
    counted_cents: int,
    user_id: int,
    notes: str | None = None,
) -> tuple[CashSession, SessionBalance]:
    """
    Close the drawer and record the count.

    difference = counted - expected (positive = overage, negative =
    shortage). A non-zero difference is recorded, never rejected.
    """
    if counted_cents < 0:
        raise CashSessionError("Counted amount must be >= 0")

    session = require_active_session(session_id, lock=True)
    balance = compute_balance(session)
    difference = counted_cents - balance.expected_cents

    session.is_active = False
    session.closed_at = utcnow()
    session.closed_by_user_id = user_id
    session.counted_cents = counted_cents
    session.sales_total_cents = balance.sales_total_cents
    session.expected_cents = balance.expected_cents
    session.difference_cents = difference
    session.closing_notes = notes

    db.session.commit()

    logger.info(
        "Cash session %s closed by user %s: expected %s, counted %s, difference %s",
        session.id,
        user_id,
        cents_to_amount(balance.expected_cents),
        cents_to_amount(counted_cents),
        cents_to_amount(difference),
    )
    return session, balance


# =============================================================================
# REPORTING
# =============================================================================

def get_session_movements(session_id: int) -> list[CashMovement]:
    return db.session.query(CashMovement).filter_by(
        cash_session_id=session_id
    ).order_by(CashMovement.occurred_at, CashMovement.id).all()


def count_session_sales(session_id: int, status: str | None = None) -> int:
    query = db.session.query(func.count(Sale.id)).filter(Sale.cash_session_id == session_id)
    if status:
        query = query.filter(Sale.status == status)
    return int(query.scalar() or 0)


def get_tender_summary(session_id: int) -> dict:
    """
    Totals tendered per payment method for finalized sales in a session.

    Returns:
        {"dinheiro": 120.0, "pix": 35.5}
    Change is reported separately and not netted out of any method.
    """
    rows = db.session.query(
        SalePayment.method,
        func.coalesce(func.sum(SalePayment.amount_cents), 0),
    ).join(Sale, Sale.id == SalePayment.sale_id).filter(
        Sale.cash_session_id == session_id,
        Sale.status == SALE_STATUS_FINALIZED,
    ).group_by(SalePayment.method).all()

    return {method: cents_to_amount(int(total)) for method, total in rows}


def get_session_summary(session_id: int) -> dict:
    """
    Full session summary: balance breakdown, tenders, counts, movements.
    """
    session = get_session(session_id)
    balance = compute_balance(session)

    change_total = db.session.query(
        func.coalesce(func.sum(Sale.change_cents), 0)
    ).filter(
        Sale.cash_session_id == session_id,
        Sale.status == SALE_STATUS_FINALIZED,
    ).scalar()

    return {
        "session": session.to_dict(),
        "balance": balance.to_dict(),
        "tenders": get_tender_summary(session_id),
        "change_given": cents_to_amount(int(change_total or 0)),
        "finalized_sales_count": count_session_sales(session_id, SALE_STATUS_FINALIZED),
        "cancelled_sales_count": count_session_sales(session_id, SALE_STATUS_CANCELLED),
        "movements": [m.to_dict() for m in get_session_movements(session_id)],
    }


def list_sessions(
    *,
    limit: int = 20,
    offset: int = 0,
    date_from=None,
    date_to=None,
) -> list[CashSession]:
    """Session history, newest first, filtered on the opening time."""
    query = db.session.query(CashSession)
    if date_from:
        query = query.filter(CashSession.opened_at >= date_from)
    if date_to:
        query = query.filter(CashSession.opened_at <= date_to)
    return query.order_by(CashSession.opened_at.desc(), CashSession.id.desc()).offset(offset).limit(limit).all()
