"""Services: REST collaborator, API models and money helpers."""
from .api import StorefrontApi
from .models import Coupon, Order, Product

__all__ = [
    "StorefrontApi",
    "Coupon",
    "Order",
    "Product",
]
