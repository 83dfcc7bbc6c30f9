"""
Checkout Errors

User-facing messages are kept as constants to avoid string duplication; the
exception classes below are what the checkout core raises.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from storefront.checkout.models import StockReport

# Session errors
ERROR_INVALID_TOKEN = "Invalid authentication token"
ERROR_PERSISTENCE_UNVERIFIED = "Could not confirm your login was saved. Please try again."
ERROR_LOGIN_REQUIRED = "Please log in to continue"

# Stock errors
ERROR_OUT_OF_STOCK = "Some products are out of stock. Please check your cart."
ERROR_INSUFFICIENT_STOCK = "Some products have insufficient stock. Please check your cart."
ERROR_STOCK_UNKNOWN = "Could not verify stock for this product"

# Payment errors
ERROR_GATEWAY_UNAVAILABLE = "Failed to load payment gateway"
ERROR_PAYMENT_VERIFICATION_FAILED = "Payment verification failed"
ERROR_PAYMENT_FAILED = "Payment failed. Please try again."
ERROR_PAYMENT_IN_PROGRESS = "A payment is already in progress"
ERROR_PAYMENT_SESSION_MISSING = "Payment session ID not received"

# Order errors
ERROR_ORDER_DATA_MISSING = "Order data not found"
ERROR_ORDER_CREATION_FAILED = "Failed to create order"
ERROR_NO_ITEMS = "No items in order"
ERROR_INCOMPLETE_ADDRESS = (
    "Please provide complete shipping address (name, phone, address, city, state, pincode)"
)
ERROR_INVALID_ORDER_ITEM = "Invalid product ID for item"
ERROR_INVALID_QUANTITY = "Invalid quantity for item"

# Coupon errors
ERROR_COUPON_INACTIVE = "This coupon is not active"
ERROR_COUPON_NOT_VALID_NOW = "This coupon is not valid at this time"
ERROR_COUPON_LIMIT_REACHED = "This coupon has reached its usage limit"
ERROR_COUPON_MIN_PURCHASE = "Minimum order of {minimum} required for this coupon"


class CheckoutError(Exception):
    """Base class for every error raised by the checkout core."""

    default_message = "Checkout error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ==================== SESSION ====================

class InvalidToken(CheckoutError):
    default_message = ERROR_INVALID_TOKEN


class PersistenceUnverified(CheckoutError):
    default_message = ERROR_PERSISTENCE_UNVERIFIED


# ==================== STOCK ====================

class StockError(CheckoutError):
    """Blocking stock problem; carries the full report for the UI."""

    def __init__(self, report: "StockReport", message: Optional[str] = None):
        self.report = report
        super().__init__(message)


class StockOutOfStock(StockError):
    default_message = ERROR_OUT_OF_STOCK


class StockInsufficient(StockError):
    default_message = ERROR_INSUFFICIENT_STOCK


class StockUnknown(CheckoutError):
    """Attached to a stock result when availability could not be fetched. Never raised."""

    default_message = ERROR_STOCK_UNKNOWN


# ==================== PAYMENTS ====================

class GatewayUnavailable(CheckoutError):
    default_message = ERROR_GATEWAY_UNAVAILABLE


class PaymentVerificationFailed(CheckoutError):
    default_message = ERROR_PAYMENT_VERIFICATION_FAILED


class PaymentFailed(CheckoutError):
    default_message = ERROR_PAYMENT_FAILED


# ==================== ORDERS ====================

class OrderDataMissing(CheckoutError):
    default_message = ERROR_ORDER_DATA_MISSING


class OrderCreationFailed(CheckoutError):
    default_message = ERROR_ORDER_CREATION_FAILED


class NoItems(CheckoutError):
    default_message = ERROR_NO_ITEMS


class IncompleteAddress(CheckoutError):
    default_message = ERROR_INCOMPLETE_ADDRESS

    def __init__(self, missing_fields: Optional[list[str]] = None, message: Optional[str] = None):
        self.missing_fields = missing_fields or []
        super().__init__(message)


class InvalidOrderItem(CheckoutError):
    default_message = ERROR_INVALID_ORDER_ITEM


class CouponRejected(CheckoutError):
    pass


# ==================== TRANSPORT ====================

class ApiError(CheckoutError):
    """REST call failed (network error, non-2xx, or success=false envelope)."""

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
