from .auth import User, SessionToken
from .catalog import Category, Product
from .inventory import InventoryRecord, StockMovement, LedgerImmutabilityError
from .orders import Cart, CartItem, Order, OrderItem
from .sales import Sale, SaleItem

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product',
    'InventoryRecord', 'StockMovement', 'LedgerImmutabilityError',
    'Cart', 'CartItem', 'Order', 'OrderItem',
    'Sale', 'SaleItem',
]
