"""Payment processing module."""
from .constants import (
    PaymentGateway,
    PaymentMethod,
    VerificationStatus,
    GATEWAY_ALIASES,
    normalize_gateway,
    is_placeholder_payment_id,
)
from .config import validate_gateway_config

__all__ = [
    "PaymentGateway",
    "PaymentMethod",
    "VerificationStatus",
    "GATEWAY_ALIASES",
    "normalize_gateway",
    "is_placeholder_payment_id",
    "validate_gateway_config",
]
