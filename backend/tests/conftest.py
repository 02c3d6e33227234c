"""
Pytest fixtures for PDV backend tests.

Provides an in-memory database, a test client, an operator with bearer
headers, catalog rows for the default stock ledger and an open cash
session.
"""

from decimal import Decimal

import pytest

from pdv import create_app
from pdv.extensions import db
from pdv.models import Product, ProductLot, User
from pdv.services import cash_session_service, session_service
from pdv.services.auth_service import hash_password
from pdv.validation import parse_create_sale


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def operator(db_session):
    """Cashier account used as the acting user."""
    user = User(
        username="caixa1",
        email="caixa1@farmacia.local",
        password_hash=hash_password("Senha1234"),
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def auth_headers(operator):
    _, token = session_service.create_session(operator.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def dipirona(db_session):
    product = Product(code="DIP500", name="Dipirona 500mg", price_cents=5990, stock_quantity=Decimal("100"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def amoxicilina(db_session):
    product = Product(code="AMX875", name="Amoxicilina 875mg", price_cents=3500, stock_quantity=Decimal("40"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def amoxicilina_lot(db_session, amoxicilina):
    lot = ProductLot(product_id=amoxicilina.id, lot_number="L2026-07", quantity=Decimal("15"))
    db_session.add(lot)
    db_session.commit()
    return lot


@pytest.fixture(scope='function')
def cash_session(operator):
    """Open drawer with a 100.00 float."""
    return cash_session_service.open_session(10000, user_id=operator.id)


def sale_payload(*lines, discount=None, notes=None) -> dict:
    """
    Build a create-sale payload from (product, quantity, unit_price[, lot]) tuples.

    Amounts are currency units, as the wire contract uses.
    """
    items = []
    subtotal = Decimal("0")
    for line in lines:
        product, quantity, unit_price = line[:3]
        lot = line[3] if len(line) > 3 else None
        line_total = (Decimal(str(quantity)) * Decimal(str(unit_price))).quantize(Decimal("0.01"))
        subtotal += line_total
        item = {
            "produto_id": product.id,
            "produto_codigo": product.code,
            "produto_nome": product.name,
            "quantidade": quantity,
            "preco_unitario": unit_price,
            "preco_total": str(line_total),
        }
        if lot is not None:
            item["lote_id"] = lot.id
        items.append(item)

    payload = {
        "itens": items,
        "subtotal": str(subtotal),
        "total": str(subtotal - Decimal(str(discount or 0))),
    }
    if discount is not None:
        payload["desconto_valor"] = discount
    if notes:
        payload["observacoes"] = notes
    return payload


def sale_command(*lines, **kwargs):
    return parse_create_sale(sale_payload(*lines, **kwargs))
