"""
Stock ledger adapter.

The sale engine never owns stock accounting. It talks to whatever ledger is
installed in app.extensions["stock_ledger"]; the default one moves the
quantity columns of the local products/product_lots tables with single
UPDATE statements so each call is atomic at row level.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, ProductLot

logger = logging.getLogger(__name__)

EXTENSION_KEY = "stock_ledger"


class StockLedgerError(Exception):
    """Raised when the ledger cannot apply a quantity change."""
    pass


class StockLedger(ABC):
    """
    Interface the sale engine consumes.

    Each method applies one quantity change or raises. Adapters should
    raise StockLedgerError for refusals they understand; any exception
    (timeouts, connection errors) is treated as a failed call and the
    change is queued as a pending StockReconciliation. A call that returns
    normally is taken as applied.
    """

    @abstractmethod
    def decrement_stock(self, product_id: int, quantity: Decimal) -> None:
        ...

    @abstractmethod
    def decrement_lot(self, lot_id: int, quantity: Decimal) -> None:
        ...

    @abstractmethod
    def increment_stock(self, product_id: int, quantity: Decimal) -> None:
        ...

    @abstractmethod
    def increment_lot(self, lot_id: int, quantity: Decimal) -> None:
        ...


class DatabaseStockLedger(StockLedger):
    """Ledger backed by the products and product_lots tables."""

    def _apply(self, column, key, row_id: int, delta: Decimal) -> None:
        model = column.class_
        stmt = (
            update(model)
            .where(key == row_id)
            .values({column.key: column + delta})
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise StockLedgerError(f"{model.__tablename__} row {row_id} not found")

    def decrement_stock(self, product_id: int, quantity: Decimal) -> None:
        self._apply(Product.stock_quantity, Product.id, product_id, -quantity)

    def decrement_lot(self, lot_id: int, quantity: Decimal) -> None:
        self._apply(ProductLot.quantity, ProductLot.id, lot_id, -quantity)

    def increment_stock(self, product_id: int, quantity: Decimal) -> None:
        self._apply(Product.stock_quantity, Product.id, product_id, quantity)

    def increment_lot(self, lot_id: int, quantity: Decimal) -> None:
        self._apply(ProductLot.quantity, ProductLot.id, lot_id, quantity)


def init_stock_ledger(app, ledger: StockLedger | None = None) -> None:
    app.extensions[EXTENSION_KEY] = ledger or DatabaseStockLedger()


def get_stock_ledger() -> StockLedger:
    ledger = current_app.extensions.get(EXTENSION_KEY)
    if ledger is None:
        ledger = DatabaseStockLedger()
        current_app.extensions[EXTENSION_KEY] = ledger
    return ledger
