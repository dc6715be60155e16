from .customers import Customer, CreditLedgerEntry
from .inventory import Product
from .sales import Sale, SaleItem, Payment
from .auth import User, SessionToken

__all__ = [
    'Customer', 'CreditLedgerEntry',
    'Product',
    'Sale', 'SaleItem', 'Payment',
    'User', 'SessionToken',
]
