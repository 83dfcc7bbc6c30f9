"""Checkout package: draft models, stock gate, order assembly."""
from .assembler import OrderAssembler
from .models import CheckoutDraft, DeliveryAddress, LineItem, StockReport
from .stock import StockValidator
from .summary import build_checkout_draft

__all__ = [
    "OrderAssembler",
    "CheckoutDraft",
    "DeliveryAddress",
    "LineItem",
    "StockReport",
    "StockValidator",
    "build_checkout_draft",
]
