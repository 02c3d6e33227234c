"""
Sales Service - sale creation, settlement and cancellation

WHY: A sale moves from draft to finalized (paid, stock committed) or
cancelled. The financial record is the source of truth; stock is pushed
to the stock ledger item by item and any ledger failure is queued as a
durable StockReconciliation row instead of reopening the sale.

DESIGN PRINCIPLES:
- Reconciliation runs before any write: a mismatch leaves the sale untouched
- Header, payments and stock calls for one finalize share one transaction
- Each stock ledger call runs in its own SAVEPOINT so one bad item does not
  undo the others
- Sale numbers come from the document sequence inside the same transaction
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ServiceError
from ..extensions import db
from ..models import CashSession, Sale, SaleItem, SalePayment, StockReconciliation
from ..models.inventory import (
    DIRECTION_DECREMENT,
    DIRECTION_INCREMENT,
    RECONCILIATION_APPLIED,
    RECONCILIATION_PENDING,
    RECONCILIATION_VOIDED,
)
from ..models.sales import (
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_DRAFT,
    SALE_STATUS_FINALIZED,
)
from ..money import cents_to_amount
from ..time_utils import utcnow
from ..validation import (
    CancelSaleCommand,
    CreateSaleCommand,
    FinalizeSaleCommand,
    ListQuery,
    SaleItemInput,
    ValidationError,
)
from .cash_session_service import SessionNotActive, get_active_session
from .concurrency import lock_for_update, run_with_retry
from .reconciliation_service import DEFAULT_TOLERANCE_CENTS, reconcile
from .sequence_service import next_sale_number
from .stock_ledger import get_stock_ledger

logger = logging.getLogger(__name__)


class SaleError(ServiceError):
    """Raised for sale operation errors."""


class NoActiveSession(SaleError):
    pass


class SaleNotFound(SaleError):
    status_code = 404


class SaleAlreadyFinalized(SaleError):
    pass


class AlreadyCancelled(SaleError):
    pass


class SaleStorageError(SaleError):
    status_code = 500


def _tolerance() -> int:
    return current_app.config.get("PAYMENT_TOLERANCE_CENTS", DEFAULT_TOLERANCE_CENTS)


# =============================================================================
# CREATE
# =============================================================================

def _resolve_discount(command: CreateSaleCommand) -> tuple[int, Decimal]:
    """
    Work out (discount_cents, discount_percent).

    discount_amount wins when both are given; a percent alone is applied to
    the subtotal and rounded half-up to the cent.
    """
    subtotal = command.subtotal_cents
    if command.discount_cents is not None:
        discount_cents = command.discount_cents
        if command.discount_percent is not None:
            percent = command.discount_percent
        elif subtotal:
            percent = Decimal(discount_cents * 100) / Decimal(subtotal)
        else:
            percent = Decimal("0")
    elif command.discount_percent is not None:
        percent = command.discount_percent
        discount_cents = int(
            (Decimal(subtotal) * percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
    else:
        return 0, Decimal("0")

    return discount_cents, percent.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _check_amounts(command: CreateSaleCommand, discount_cents: int) -> None:
    tolerance = _tolerance()

    for index, item in enumerate(command.items):
        expected = item.quantity * item.unit_price_cents
        if abs(Decimal(item.line_total_cents) - expected) > tolerance:
            raise ValidationError(
                f"itens[{index}].preco_total does not match quantidade x preco_unitario",
                details={
                    "index": index,
                    "line_total": cents_to_amount(item.line_total_cents),
                    "expected": float((expected / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
                },
            )

    items_total = sum(item.line_total_cents for item in command.items)
    if abs(items_total - command.subtotal_cents) > tolerance:
        raise ValidationError(
            "subtotal does not match the sum of item totals",
            details={
                "subtotal": cents_to_amount(command.subtotal_cents),
                "items_total": cents_to_amount(items_total),
            },
        )

    if discount_cents > command.subtotal_cents:
        raise ValidationError("Discount cannot exceed the subtotal")

    expected_total = command.subtotal_cents - discount_cents
    if abs(expected_total - command.total_cents) > tolerance:
        raise ValidationError(
            "total must equal subtotal minus discount",
            details={
                "total": cents_to_amount(command.total_cents),
                "expected": cents_to_amount(expected_total),
            },
        )


def _persist_items(sale: Sale, items: tuple[SaleItemInput, ...]) -> list[SaleItem]:
    rows = []
    for item in items:
        row = SaleItem(
            sale_id=sale.id,
            product_id=item.product_id,
            product_code=item.product_code,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            line_total_cents=item.line_total_cents,
            lot_id=item.lot_id,
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()
    return rows


def create_sale(command: CreateSaleCommand, user_id: int) -> Sale:
    """
    Create a draft sale with its items, bound to the active cash session.

    The header is flushed first so items can reference it. If writing the
    items fails, the whole unit is rolled back (header included) and
    SaleStorageError is raised: no sale survives without its items.

    Raises:
        NoActiveSession: no cash session is open (nothing is written)
        ValidationError: amounts do not add up
        SaleStorageError: items could not be written
    """
    if not command.items:
        raise ValidationError("A sale needs at least one item")

    discount_cents, discount_percent = _resolve_discount(command)
    _check_amounts(command, discount_cents)

    def _op():
        session = get_active_session(lock=True)
        if session is None:
            raise NoActiveSession("No open cash session. Open the cash drawer before selling.")

        sale = Sale(
            sale_number=next_sale_number(),
            cash_session_id=session.id,
            customer_id=command.customer.customer_id,
            customer_name=command.customer.name,
            customer_document=command.customer.document,
            customer_phone=command.customer.phone,
            subtotal_cents=command.subtotal_cents,
            discount_cents=discount_cents,
            discount_percent=discount_percent,
            total_cents=command.total_cents,
            change_cents=0,
            status=SALE_STATUS_DRAFT,
            payment_status=PAYMENT_STATUS_PENDING,
            notes=command.notes,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        try:
            _persist_items(sale, command.items)
        except (OperationalError, StaleDataError):
            raise
        except SQLAlchemyError as exc:
            # Compensation: rolling back discards the flushed header too
            db.session.rollback()
            logger.error("Sale %s discarded, items could not be written: %s", sale.sale_number, exc)
            raise SaleStorageError("Could not store sale items; the sale was not created")

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s created in cash session %s", sale.sale_number, sale.cash_session_id)
    return sale


# =============================================================================
# STOCK
# =============================================================================

def _ledger_operations(direction: str):
    ledger = get_stock_ledger()
    if direction == DIRECTION_DECREMENT:
        return ledger.decrement_stock, ledger.decrement_lot
    return ledger.increment_stock, ledger.increment_lot


def _ledger_call(operation, row_id: int, quantity: Decimal) -> str | None:
    """
    Run one ledger call in a SAVEPOINT. Returns the error text on failure.

    Any exception from the adapter counts as a failed call: the savepoint
    is rolled back and the caller queues the change for reconciliation.
    """
    try:
        with db.session.begin_nested():
            operation(row_id, quantity)
    except Exception as exc:
        logger.debug("Stock ledger call failed", exc_info=True)
        return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    return None


def _pending_decrements(sale_id: int) -> dict[int, StockReconciliation]:
    rows = db.session.query(StockReconciliation).filter_by(
        sale_id=sale_id,
        direction=DIRECTION_DECREMENT,
        status=RECONCILIATION_PENDING,
    ).all()
    return {row.sale_item_id: row for row in rows}


def _apply_stock(sale: Sale, direction: str) -> list[dict]:
    """
    Push every item of a sale through the stock ledger.

    Failed calls are recorded as pending StockReconciliation rows in the
    current transaction. On reversal, decrements that are still pending
    are voided rather than incremented, so stock moves back exactly once.

    Returns one warning dict per item that could not be fully applied.
    """
    stock_op, lot_op = _ledger_operations(direction)
    unapplied = _pending_decrements(sale.id) if direction == DIRECTION_INCREMENT else {}
    warnings = []

    for item in sale.items:
        product_owed = True
        lot_owed = item.lot_id is not None

        pending = unapplied.get(item.id)
        if pending is not None:
            product_owed = product_owed and not pending.product_pending
            lot_owed = lot_owed and not pending.lot_pending
            pending.product_pending = False
            pending.lot_pending = False
            pending.status = RECONCILIATION_VOIDED

        errors = []
        product_error = _ledger_call(stock_op, item.product_id, item.quantity) if product_owed else None
        if product_error:
            errors.append(f"product {item.product_id}: {product_error}")
        lot_error = _ledger_call(lot_op, item.lot_id, item.quantity) if lot_owed else None
        if lot_error:
            errors.append(f"lot {item.lot_id}: {lot_error}")

        if not errors:
            continue

        db.session.add(StockReconciliation(
            sale_id=sale.id,
            sale_item_id=item.id,
            direction=direction,
            product_id=item.product_id,
            lot_id=item.lot_id,
            quantity=item.quantity,
            product_pending=product_error is not None,
            lot_pending=lot_error is not None,
            status=RECONCILIATION_PENDING,
            attempts=1,
            last_error="; ".join(errors),
            created_at=utcnow(),
        ))
        logger.warning(
            "Stock %s for sale %s item %s queued for reconciliation: %s",
            direction, sale.sale_number, item.id, "; ".join(errors),
        )
        warnings.append({
            "sale_item_id": item.id,
            "product_id": item.product_id,
            "lot_id": item.lot_id,
            "message": f"Stock {direction} pending reconciliation",
        })

    return warnings


# =============================================================================
# FINALIZE / CANCEL
# =============================================================================

def _load_sale_for_update(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def _lock_cash_session(sale: Sale) -> CashSession:
    """Lock and re-read the cash session a sale belongs to."""
    return lock_for_update(
        db.session.query(CashSession).filter_by(id=sale.cash_session_id).populate_existing()
    ).one()


def finalize_sale(command: FinalizeSaleCommand, user_id: int) -> dict:
    """
    Settle a draft sale.

    Order of work:
    1. Lock the sale and its cash session; the sale must be a draft and the
       session open
    2. Reconcile payments against the total (PaymentMismatch, nothing written)
    3. Mark finalized/paid, record change, insert one payment row per tender
    4. Decrement stock per item; failures become pending reconciliations

    Returns:
        {"success", "sale_id", "sale_number", "total", "change", "warnings"}
    """
    def _op():
        sale = _load_sale_for_update(command.sale_id)

        if sale.status == SALE_STATUS_FINALIZED:
            raise SaleAlreadyFinalized(f"Sale {sale.sale_number} is already finalized")
        if sale.status == SALE_STATUS_CANCELLED:
            raise AlreadyCancelled(f"Sale {sale.sale_number} is cancelled")
        if not _lock_cash_session(sale).is_active:
            raise SessionNotActive(
                f"Cash session {sale.cash_session_id} is closed; sale {sale.sale_number} cannot be finalized",
                details={"session_id": sale.cash_session_id},
            )

        reconcile(
            [payment.amount_cents for payment in command.payments],
            command.change_cents,
            sale.total_cents,
            tolerance_cents=_tolerance(),
        )

        now = utcnow()
        sale.status = SALE_STATUS_FINALIZED
        sale.payment_status = PAYMENT_STATUS_PAID
        sale.change_cents = command.change_cents
        sale.finalized_at = now

        for payment in command.payments:
            db.session.add(SalePayment(
                sale_id=sale.id,
                method=payment.method,
                amount_cents=payment.amount_cents,
                card_brand=payment.card_brand,
                authorization_code=payment.authorization_code,
                transaction_code=payment.transaction_code,
                notes=payment.notes,
                created_by_user_id=user_id,
                paid_at=now,
            ))
        db.session.flush()

        warnings = _apply_stock(sale, DIRECTION_DECREMENT)
        db.session.commit()
        return sale, warnings

    sale, warnings = run_with_retry(_op)
    logger.info(
        "Sale %s finalized: total %s, change %s, %s payment(s)",
        sale.sale_number,
        cents_to_amount(sale.total_cents),
        cents_to_amount(sale.change_cents),
        len(command.payments),
    )

    return {
        "success": True,
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "total": cents_to_amount(sale.total_cents),
        "change": cents_to_amount(sale.change_cents),
        "warnings": warnings,
    }


def cancel_sale(command: CancelSaleCommand, user_id: int) -> dict:
    """
    Cancel a draft or finalized sale.

    A finalized sale gets its stock reversed (incremented back). A draft
    never touched stock, so nothing is reversed.

    A finalized sale counts in its session's balance, so it can only be
    cancelled while that session is open. Drafts can be cancelled at any
    time.
    """
    def _op():
        sale = _load_sale_for_update(command.sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise AlreadyCancelled(f"Sale {sale.sale_number} is already cancelled")

        was_finalized = sale.status == SALE_STATUS_FINALIZED
        if was_finalized and not _lock_cash_session(sale).is_active:
            raise SessionNotActive(
                f"Cash session {sale.cash_session_id} is closed; sale {sale.sale_number} cannot be cancelled",
                details={"session_id": sale.cash_session_id},
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.payment_status = PAYMENT_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id
        sale.cancel_reason = command.reason
        db.session.flush()

        warnings = _apply_stock(sale, DIRECTION_INCREMENT) if was_finalized else []
        db.session.commit()
        return sale, was_finalized, warnings

    sale, was_finalized, warnings = run_with_retry(_op)
    logger.info(
        "Sale %s cancelled by user %s (stock reversed: %s)",
        sale.sale_number, user_id, was_finalized,
    )
    return {
        "success": True,
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "stock_reversed": was_finalized,
        "warnings": warnings,
    }


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def list_sales(query: ListQuery) -> list[Sale]:
    """Sale headers, newest first."""
    q = db.session.query(Sale)
    if query.status:
        q = q.filter(Sale.status == query.status)
    if query.date_from:
        q = q.filter(Sale.created_at >= query.date_from)
    if query.date_to:
        q = q.filter(Sale.created_at <= query.date_to)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(query.offset).limit(query.limit).all()


# =============================================================================
# RECONCILIATION QUEUE
# =============================================================================

def list_pending_reconciliations() -> list[StockReconciliation]:
    return db.session.query(StockReconciliation).filter_by(
        status=RECONCILIATION_PENDING
    ).order_by(StockReconciliation.created_at, StockReconciliation.id).all()


def retry_pending_reconciliations() -> dict:
    """
    Replay pending stock ledger calls.

    Rows whose owed calls all succeed become applied; the rest stay pending
    with attempts incremented and the latest error stored.

    Returns:
        {"applied": n, "pending": m}
    """
    applied = 0
    still_pending = 0

    for row in list_pending_reconciliations():
        stock_op, lot_op = _ledger_operations(row.direction)
        errors = []

        if row.product_pending:
            error = _ledger_call(stock_op, row.product_id, row.quantity)
            if error:
                errors.append(f"product {row.product_id}: {error}")
            else:
                row.product_pending = False

        if row.lot_pending and row.lot_id is not None:
            error = _ledger_call(lot_op, row.lot_id, row.quantity)
            if error:
                errors.append(f"lot {row.lot_id}: {error}")
            else:
                row.lot_pending = False

        if errors:
            row.attempts += 1
            row.last_error = "; ".join(errors)
            still_pending += 1
        else:
            row.status = RECONCILIATION_APPLIED
            row.applied_at = utcnow()
            applied += 1

    db.session.commit()
    if applied or still_pending:
        logger.info("Stock reconciliation retry: %s applied, %s still pending", applied, still_pending)
    return {"applied": applied, "pending": still_pending}
