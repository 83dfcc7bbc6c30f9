"""Payment constants, enums, and aliases."""
from enum import Enum


class PaymentGateway(str, Enum):
    """
    Supported payment gateways.

    - razorpay (gateway A): in-page UI, synchronous confirmation callback
    - cashfree (gateway B): hosted page, confirmation arrives on a return URL
    """
    RAZORPAY = "razorpay"
    CASHFREE = "cashfree"


class PaymentMethod(str, Enum):
    """Payment method recorded on the order."""
    ONLINE = "online"
    COD = "cod"


class VerificationStatus(str, Enum):
    """
    How strongly a payment was confirmed before the order was created.

    - verified: the gateway confirmation was checked server-side
    - resolved: the return URL carried a placeholder, the real payment id was
      recovered through a status lookup
    - unverified-but-redirected: nothing could be checked; arrival on the
      gateway's return URL is the only evidence. Needs manual reconciliation.
    """
    VERIFIED = "verified"
    RESOLVED = "resolved"
    UNVERIFIED_REDIRECT = "unverified-but-redirected"


# Gateway name aliases (input -> canonical)
GATEWAY_ALIASES: dict[str, str] = {
    "a": PaymentGateway.RAZORPAY.value,
    "razorpay": PaymentGateway.RAZORPAY.value,
    "razor_pay": PaymentGateway.RAZORPAY.value,
    "b": PaymentGateway.CASHFREE.value,
    "cashfree": PaymentGateway.CASHFREE.value,
    "cash_free": PaymentGateway.CASHFREE.value,
    "cash-free": PaymentGateway.CASHFREE.value,
}

# Values a gateway may leave unexpanded in its return URL template
PAYMENT_ID_PLACEHOLDERS: frozenset[str] = frozenset({"{payment_id}", "placeholder", "null", "undefined"})

# Return URL query parameters
RETURN_PARAM_GATEWAY = "gateway"
RETURN_PARAM_ORDER_ID = "order_id"
RETURN_PARAM_PAYMENT_ID = "payment_id"


def normalize_gateway(gateway: str | None) -> str:
    """
    Normalize gateway name to canonical form.

    Example:
        normalize_gateway("B") -> "cashfree"
        normalize_gateway(" Razorpay ") -> "razorpay"
    """
    if not gateway:
        return ""
    normalized = gateway.lower().strip()
    return GATEWAY_ALIASES.get(normalized, normalized)


def is_placeholder_payment_id(payment_id: str | None) -> bool:
    """True when the return URL did not carry a usable payment id."""
    if not payment_id or not payment_id.strip():
        return True
    return payment_id.strip().lower() in PAYMENT_ID_PLACEHOLDERS
