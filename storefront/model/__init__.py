# ------ storefront/model/__init__.py ------

from .product import Product, ProductVariant
from .cart import Cart, CartItem
from .types import GUID
from .order import Order, OrderItem

__all__ = [
    "Product",
    "ProductVariant",
    "Cart",
    "CartItem",
    "GUID",
    "Order",
    "OrderItem",
]
