from .auth import User, SessionToken
from .catalog import Product, ProductVariant, City, Address
from .orders import Order, OrderLine, Payment, Delivery

__all__ = [
    'User', 'SessionToken',
    'Product', 'ProductVariant', 'City', 'Address',
    'Order', 'OrderLine', 'Payment', 'Delivery',
]
