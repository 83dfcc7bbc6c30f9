"""Payment gateway configuration and validation."""
import os

from storefront.errors import GatewayUnavailable
from storefront.logging import get_logger

from .constants import PaymentGateway, normalize_gateway

logger = get_logger(__name__)

CASHFREE_MODE = os.environ.get("CASHFREE_MODE", "sandbox")  # sandbox | production

# Hosted checkout pages per mode
CASHFREE_CHECKOUT_URLS: dict[str, str] = {
    "sandbox": "https://sandbox.cashfree.com/pg/view/sessions/checkout",
    "production": "https://api.cashfree.com/pg/view/sessions/checkout",
}

# Human-readable gateway names for error messages
GATEWAY_NAMES: dict[str, str] = {
    PaymentGateway.RAZORPAY.value: "Razorpay",
    PaymentGateway.CASHFREE.value: "Cashfree",
}


def get_enabled_gateways() -> set[str]:
    """Gateways switched on for this deployment (ENABLED_PAYMENT_GATEWAYS, comma list)."""
    raw = os.environ.get(
        "ENABLED_PAYMENT_GATEWAYS",
        ",".join(g.value for g in PaymentGateway),
    )
    return {normalize_gateway(name) for name in raw.split(",") if name.strip()}


def get_default_gateway() -> str:
    """Get the default payment gateway from environment."""
    default = os.environ.get("DEFAULT_PAYMENT_GATEWAY", PaymentGateway.RAZORPAY.value)
    return normalize_gateway(default)


def get_cashfree_checkout_url() -> str:
    """Hosted checkout base URL; CASHFREE_CHECKOUT_URL overrides the mode default."""
    override = os.environ.get("CASHFREE_CHECKOUT_URL")
    if override:
        return override.rstrip("/")
    return CASHFREE_CHECKOUT_URLS.get(CASHFREE_MODE, CASHFREE_CHECKOUT_URLS["sandbox"])


def validate_gateway_config(gateway: str | None) -> PaymentGateway:
    """
    Validate that a gateway is known and enabled.

    Args:
        gateway: Gateway name or alias; empty means the default gateway

    Returns:
        Canonical PaymentGateway

    Raises:
        GatewayUnavailable: unknown or disabled gateway
    """
    name = normalize_gateway(gateway) or get_default_gateway()
    try:
        canonical = PaymentGateway(name)
    except ValueError:
        logger.error("Unknown payment gateway requested: %s", name)
        raise GatewayUnavailable(f"Unknown payment gateway: {name}")

    if canonical.value not in get_enabled_gateways():
        display = GATEWAY_NAMES.get(canonical.value, canonical.value)
        logger.error("Payment gateway %s is not enabled", display)
        raise GatewayUnavailable(f"{display} is not available right now")

    return canonical
