from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from pdv.extensions import db
from pdv.models import CashMovement, CashSession
from pdv.services import cash_session_service, sales_service
from pdv.services.cash_session_service import (
    CashSessionError,
    SessionAlreadyOpen,
    SessionNotActive,
    SessionNotFound,
)
from pdv.validation import CancelSaleCommand, FinalizeSaleCommand, PaymentInput

from conftest import sale_command


def _sell(operator, product, price, *, finalize=True):
    sale = sales_service.create_sale(sale_command((product, 1, price)), user_id=operator.id)
    if finalize:
        sales_service.finalize_sale(
            FinalizeSaleCommand(
                sale_id=sale.id,
                payments=(PaymentInput(method="dinheiro", amount_cents=sale.total_cents),),
            ),
            user_id=operator.id,
        )
    return sale


def test_open_session_sets_active(operator):
    session = cash_session_service.open_session(10000, user_id=operator.id, notes="Turno manha")

    assert session.is_active is True
    assert session.initial_cents == 10000
    assert session.opening_notes == "Turno manha"
    assert cash_session_service.get_active_session().id == session.id


def test_second_open_is_rejected(cash_session, operator):
    with pytest.raises(SessionAlreadyOpen) as exc:
        cash_session_service.open_session(5000, user_id=operator.id)

    assert exc.value.details["session_id"] == cash_session.id
    assert db.session.query(CashSession).count() == 1


def test_negative_float_is_rejected(operator):
    with pytest.raises(CashSessionError):
        cash_session_service.open_session(-1, user_id=operator.id)


def test_unique_index_allows_only_one_active_row(operator):
    db.session.add(CashSession(is_active=True, opened_by_user_id=operator.id, initial_cents=0))
    db.session.commit()

    db.session.add(CashSession(is_active=True, opened_by_user_id=operator.id, initial_cents=0))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    # Closed rows are not covered by the index
    db.session.add(CashSession(is_active=False, opened_by_user_id=operator.id, initial_cents=0))
    db.session.add(CashSession(is_active=False, opened_by_user_id=operator.id, initial_cents=0))
    db.session.commit()
    assert db.session.query(CashSession).count() == 3


def test_racing_open_loses_on_index(cash_session, operator, monkeypatch):
    # Simulate a caller whose pre-check ran before the other open committed
    monkeypatch.setattr(cash_session_service, "get_active_session", lambda: None)

    with pytest.raises(SessionAlreadyOpen) as exc:
        cash_session_service.open_session(5000, user_id=operator.id)

    assert exc.value.details["session_id"] == cash_session.id
    assert db.session.query(CashSession).filter_by(is_active=True).count() == 1


def test_other_integrity_errors_on_open_are_not_masked(operator, monkeypatch):
    def failing_commit():
        raise IntegrityError(
            "INSERT INTO cash_sessions", {}, Exception("FOREIGN KEY constraint failed")
        )

    monkeypatch.setattr(db.session(), "commit", failing_commit)

    with pytest.raises(IntegrityError):
        cash_session_service.open_session(5000, user_id=operator.id)

    assert db.session.query(CashSession).count() == 0


def test_movements_are_recorded_without_touching_session(cash_session, operator):
    movement = cash_session_service.record_movement(
        cash_session.id, "sangria", 2000, "Deposito no cofre", user_id=operator.id
    )

    assert movement.movement_type == "sangria"
    assert movement.amount_cents == 2000
    assert db.session.get(CashSession, cash_session.id).expected_cents is None


def test_movement_requires_description(cash_session, operator):
    with pytest.raises(CashSessionError):
        cash_session_service.record_movement(cash_session.id, "suprimento", 500, "  ", user_id=operator.id)


def test_movement_on_unknown_session(operator):
    with pytest.raises(SessionNotFound):
        cash_session_service.record_movement(999, "sangria", 500, "Troco", user_id=operator.id)


def test_balance_derivation(cash_session, operator, dipirona, amoxicilina):
    _sell(operator, dipirona, 59.90)
    _sell(operator, amoxicilina, 35.00, finalize=False)  # draft does not count
    cancelled = _sell(operator, amoxicilina, 35.00)
    sales_service.cancel_sale(CancelSaleCommand(sale_id=cancelled.id), user_id=operator.id)

    cash_session_service.record_movement(cash_session.id, "sangria", 2000, "Cofre", user_id=operator.id)
    cash_session_service.record_movement(cash_session.id, "suprimento", 500, "Moedas", user_id=operator.id)

    balance = cash_session_service.compute_balance(cash_session)
    assert balance.initial_cents == 10000
    assert balance.sales_total_cents == 5990
    assert balance.withdrawals_cents == 2000
    assert balance.deposits_cents == 500
    assert balance.expected_cents == 10000 + 5990 - 2000 + 500


def test_close_records_difference(cash_session, operator, dipirona):
    _sell(operator, dipirona, 59.90)

    session, balance = cash_session_service.close_session(
        cash_session.id, 15500, user_id=operator.id, notes="Faltou troco"
    )

    assert balance.expected_cents == 15990
    assert session.is_active is False
    assert session.counted_cents == 15500
    assert session.expected_cents == 15990
    assert session.sales_total_cents == 5990
    assert session.difference_cents == -490
    assert session.closed_by_user_id == operator.id
    assert session.to_dict()["difference"] == -4.9


def test_overage_is_positive(cash_session, operator):
    session, _ = cash_session_service.close_session(cash_session.id, 10250, user_id=operator.id)
    assert session.difference_cents == 250


def test_closed_session_is_terminal(cash_session, operator, dipirona):
    cash_session_service.close_session(cash_session.id, 10000, user_id=operator.id)

    with pytest.raises(SessionNotActive):
        cash_session_service.close_session(cash_session.id, 10000, user_id=operator.id)
    with pytest.raises(SessionNotActive):
        cash_session_service.record_movement(cash_session.id, "sangria", 100, "Cofre", user_id=operator.id)

    assert db.session.query(CashMovement).count() == 0

    reopened = cash_session_service.open_session(0, user_id=operator.id)
    assert reopened.id != cash_session.id


def test_session_summary(cash_session, operator, dipirona, amoxicilina):
    sale = sales_service.create_sale(
        sale_command((dipirona, 1, 59.90), (amoxicilina, 1, 35.00)), user_id=operator.id
    )
    sales_service.finalize_sale(
        FinalizeSaleCommand(
            sale_id=sale.id,
            payments=(
                PaymentInput(method="cartao_debito", amount_cents=5000),
                PaymentInput(method="dinheiro", amount_cents=5000),
            ),
            change_cents=510,
        ),
        user_id=operator.id,
    )
    cash_session_service.record_movement(cash_session.id, "sangria", 1000, "Cofre", user_id=operator.id)

    summary = cash_session_service.get_session_summary(cash_session.id)

    assert summary["balance"]["sales_total"] == 94.9
    assert summary["balance"]["expected_balance"] == 184.9
    assert summary["tenders"] == {"cartao_debito": 50.0, "dinheiro": 50.0}
    assert summary["change_given"] == 5.1
    assert summary["finalized_sales_count"] == 1
    assert summary["cancelled_sales_count"] == 0
    assert [m["type"] for m in summary["movements"]] == ["sangria"]


def test_history_newest_first(operator):
    first = cash_session_service.open_session(0, user_id=operator.id)
    cash_session_service.close_session(first.id, 0, user_id=operator.id)
    second = cash_session_service.open_session(0, user_id=operator.id)

    history = cash_session_service.list_sessions(limit=10)
    assert [s.id for s in history] == [second.id, first.id]
    assert len(cash_session_service.list_sessions(limit=1)) == 1
