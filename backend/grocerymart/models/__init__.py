from .accounts import Account, CreditTransaction, SessionToken
from .catalog import Product
from .orders import Order, OrderItem, DocumentSequence
from .returns import ReturnRequest

__all__ = [
    'Account', 'CreditTransaction', 'SessionToken',
    'Product',
    'Order', 'OrderItem', 'DocumentSequence',
    'ReturnRequest',
]
