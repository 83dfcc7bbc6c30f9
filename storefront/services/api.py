"""Storefront REST API client.

The server is an external collaborator: products, coupons, order creation and
the server-side halves of both payment gateways live behind it.
"""

import os
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

import httpx

from storefront.errors import ApiError
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.models import Coupon, Order, Product
from storefront.services.money import Number, to_float

if TYPE_CHECKING:
    from storefront.auth.session import AuthSessionGuard

logger = get_logger(__name__)

STOREFRONT_API_URL = os.environ.get("STOREFRONT_API_URL", "http://localhost:5001/api")
STOREFRONT_API_TIMEOUT = float(os.environ.get("STOREFRONT_API_TIMEOUT", "10"))
PAYMENT_CURRENCY = "INR"

# Endpoints that must never carry the user's bearer token
PUBLIC_ENDPOINTS = (
    "/users/login",
    "/users/register",
    "/users/send-otp",
    "/users/verify-otp",
)

# Sent instead of a payment id when only the order reference is known
PAYMENT_ID_LOOKUP = "placeholder"


def _is_public(path: str) -> bool:
    return any(endpoint in path for endpoint in PUBLIC_ENDPOINTS)


class StorefrontApi:
    """Async client for the storefront REST API."""

    def __init__(
        self,
        session: Optional["AuthSessionGuard"] = None,
        base_url: str = STOREFRONT_API_URL,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")

        # HTTP client (lazy init)
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy creation of shared httpx client with timeouts."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(STOREFRONT_API_TIMEOUT, connect=5.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http_client

    async def _request(self, method: str, path: str, payload: dict | None = None) -> Any:
        """Perform a request and unwrap the {success, data, message} envelope."""
        headers = {"Accept": "application/json"}
        token_sent = False
        if self.session is not None and not _is_public(path):
            token = await self.session.bearer_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
                token_sent = True
            else:
                logger.warning("No token found for protected endpoint %s", path)

        client = await self._get_http_client()
        try:
            response = await client.request(
                method, f"{self.base_url}{path}", json=payload, headers=headers
            )
        except httpx.RequestError as e:
            logger.warning("Storefront API network error on %s %s: %s", method, path, e)
            raise ApiError(f"Failed to connect to storefront API: {e!s}") from e

        if response.status_code == 401 and self.session is not None:
            await self.session.handle_unauthorized(path, token_sent)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error or (isinstance(body, dict) and body.get("success") is False):
            message = body.get("message") if isinstance(body, dict) else None
            message = message or response.text[:200] or f"HTTP {response.status_code}"
            logger.warning(
                "Storefront API error %s on %s %s: %s", response.status_code, method, path, message
            )
            raise ApiError(message, status_code=response.status_code)

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # ==================== CATALOG ====================

    async def get_product(self, product_id: str) -> Product:
        data = await self._request("GET", f"/products/{quote(str(product_id), safe='')}")
        return Product.model_validate(data)

    async def get_coupon(self, code: str) -> Coupon:
        data = await self._request("GET", f"/coupons/code/{quote(code, safe='')}")
        return Coupon.model_validate(data)

    # ==================== ORDERS ====================

    async def create_order(self, payload: dict[str, Any]) -> Order:
        """POST the normalized order-creation request. Never retried here."""
        data = await self._request("POST", "/orders", payload)
        order = Order.model_validate(data or {})
        logger.info("Order created: %s", sanitize_id_for_logging(order.reference))
        return order

    # ==================== GATEWAY A (in-page) ====================

    async def create_gateway_a_order(self, amount: Number, receipt: str) -> dict[str, Any]:
        """Create the server-side gateway A order. Returns orderId, keyId, amount, currency."""
        return await self._request(
            "POST",
            "/payments/create-order",
            {"amount": to_float(amount), "currency": PAYMENT_CURRENCY, "receipt": receipt},
        )

    async def verify_gateway_a_payment(
        self, order_id: str, payment_id: str, signature: str
    ) -> dict[str, Any]:
        """Server-side signature check of an in-page confirmation."""
        return await self._request(
            "POST",
            "/payments/verify-payment",
            {
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            },
        )

    # ==================== GATEWAY B (redirect) ====================

    async def create_gateway_b_session(
        self, amount: Number, order_id: str, customer: dict[str, str]
    ) -> dict[str, Any]:
        """Create a hosted-checkout session. Returns paymentSessionId, appId."""
        return await self._request(
            "POST",
            "/payments/cashfree/create-session",
            {
                "amount": to_float(amount),
                "currency": PAYMENT_CURRENCY,
                "orderId": order_id,
                "customerDetails": customer,
            },
        )

    async def verify_gateway_b_payment(self, order_id: str, payment_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/payments/cashfree/verify-payment",
            {"orderId": order_id, "paymentId": payment_id},
        )

    async def lookup_gateway_b_payment(self, order_id: str) -> dict[str, Any]:
        """Gateway status lookup by order reference; the server resolves the payment id."""
        return await self.verify_gateway_b_payment(order_id, PAYMENT_ID_LOOKUP)

    async def aclose(self) -> None:
        """Close http client if created."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
