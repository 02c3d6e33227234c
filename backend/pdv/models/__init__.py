from .auth import User, SessionToken
from .cash import CashSession, CashMovement
from .sales import Sale, SaleItem, SalePayment
from .inventory import Product, ProductLot, StockReconciliation
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'CashSession', 'CashMovement',
    'Sale', 'SaleItem', 'SalePayment',
    'Product', 'ProductLot', 'StockReconciliation',
    'DocumentSequence',
]
