"""
Order domain models.

- Product: Vendor-owned item with server-side price and stock
- Order: Buyer/vendor purchase with django-fsm status
- OrderItem: Line item snapshot
- ShippingAddress: Delivery details driving the delivery fee
- VendorRating: Optional rating left at buyer confirmation
"""

from orders.models.order import Order, OrderItem, ShippingAddress, VendorRating
from orders.models.product import Product

__all__ = [
    "Order",
    "OrderItem",
    "Product",
    "ShippingAddress",
    "VendorRating",
]
