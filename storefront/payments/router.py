"""
Gateway Router

One pay(draft) contract over two gateways with different confirmation models:

- gateway A (razorpay): in-page UI, confirmation arrives in the same call,
  verified server-side, then the order is created immediately
- gateway B (cashfree): hosted page, the pending session and the draft are
  persisted durably and the caller navigates to the returned URL; the order
  is created later by the callback reconciler
- cash on delivery: no gateway, the order is created directly

Every attempt is gated on a fresh stock check.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from storefront.auth.session import AuthSessionGuard
from storefront.checkout.assembler import OrderAssembler
from storefront.checkout.confirmation import confirmation_snapshot, stash_confirmation_safely
from storefront.checkout.models import (
    CheckoutDraft,
    DeliveryAddress,
    GatewayEvidence,
    GatewaySession,
    PendingRedirect,
    StockReport,
)
from storefront.checkout.stock import StockValidator
from storefront.errors import (
    ERROR_LOGIN_REQUIRED,
    ERROR_PAYMENT_IN_PROGRESS,
    ERROR_PAYMENT_SESSION_MISSING,
    ApiError,
    GatewayUnavailable,
    InvalidToken,
    OrderCreationFailed,
    PaymentFailed,
    PaymentVerificationFailed,
    StockInsufficient,
    StockOutOfStock,
)
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.api import PAYMENT_CURRENCY, StorefrontApi
from storefront.services.models import Order
from storefront.storage import TTL, DurableStorage, StorageKeys

from .config import GATEWAY_NAMES, validate_gateway_config
from .constants import PaymentGateway, PaymentMethod
from .gateways import GatewaySdk, InPageCheckout, InPageStatus, RedirectCheckout

logger = get_logger(__name__)

STORE_NAME = "Storefront"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"  # order created
    REDIRECTING = "redirecting"  # caller must navigate to redirect_url
    DISMISSED = "dismissed"  # user closed the payment UI


@dataclass
class PaymentOutcome:
    status: PaymentStatus
    order: Optional[Order] = None
    evidence: Optional[GatewayEvidence] = None
    confirmation: Optional[dict[str, Any]] = None
    redirect_url: Optional[str] = None
    session: Optional[GatewaySession] = None


def customer_details(
    address: Optional[DeliveryAddress], user: Optional[dict[str, Any]] = None
) -> dict[str, str]:
    """Gateway customer prefill derived from the delivery address."""
    user = user or {}
    phone = (address.phone if address else None) or user.get("phone") or ""
    name = (address.name if address else None) or user.get("name") or ""
    return {
        "customerId": str(user.get("_id") or phone),
        "customerName": name,
        "customerEmail": user.get("email") or "",
        "customerPhone": phone,
    }


class GatewayRouter:
    """Drives one checkout attempt through the selected gateway."""

    def __init__(
        self,
        api: StorefrontApi,
        storage: DurableStorage,
        *,
        stock_validator: Optional[StockValidator] = None,
        session_guard: Optional[AuthSessionGuard] = None,
        in_page: Optional[InPageCheckout] = None,
        redirect: Optional[RedirectCheckout] = None,
        assembler: Optional[OrderAssembler] = None,
    ):
        self.api = api
        self.storage = storage
        self.stock_validator = stock_validator if stock_validator is not None else StockValidator(api)
        self.session_guard = session_guard
        self.in_page = in_page
        self.redirect = redirect
        self.assembler = assembler if assembler is not None else OrderAssembler()

        self.processing = False
        self.pay_enabled = False
        self.stock_report: Optional[StockReport] = None

    async def refresh_stock(self, draft: CheckoutDraft) -> StockReport:
        """Fresh availability for the draft; enables the pay action only if nothing blocks."""
        report = await self.stock_validator.validate(draft.items)
        self.stock_report = report
        self.pay_enabled = report.all_ok
        return report

    async def pay(
        self,
        draft: CheckoutDraft,
        payment_method: Union[PaymentMethod, str] = PaymentMethod.ONLINE,
    ) -> PaymentOutcome:
        """
        Run one payment attempt.

        Returns:
            PaymentOutcome. REDIRECTING means the caller must navigate to
            redirect_url; the order is created on return.

        Raises:
            StockOutOfStock / StockInsufficient: blocking stock problem
            NoItems / IncompleteAddress / InvalidOrderItem: draft not orderable
            GatewayUnavailable: gateway disabled, SDK failed to load or init
            PaymentFailed: gateway reported failure
            PaymentVerificationFailed: gateway A confirmation rejected server-side
            OrderCreationFailed: order creation call failed
        """
        if self.processing:
            raise PaymentFailed(ERROR_PAYMENT_IN_PROGRESS)

        method = PaymentMethod(payment_method)
        self.processing = True
        try:
            await self._require_session()

            report = await self.refresh_stock(draft)
            if report.out_of_stock:
                raise StockOutOfStock(report, report.describe())
            if report.insufficient:
                raise StockInsufficient(report, report.describe())

            # Surface draft problems before any money moves
            self.assembler.assemble(draft, payment_method=method)

            if method is PaymentMethod.COD:
                return await self._create_order(draft, None, method)

            gateway = validate_gateway_config(draft.selected_gateway)
            if gateway is PaymentGateway.RAZORPAY:
                return await self._pay_in_page(draft)
            return await self._pay_redirect(draft)
        finally:
            self.processing = False

    async def _require_session(self) -> None:
        if self.session_guard is None:
            return
        readiness = await self.session_guard.await_ready()
        if not readiness.allows_render:
            raise InvalidToken(ERROR_LOGIN_REQUIRED)

    def _current_user(self) -> Optional[dict[str, Any]]:
        if self.session_guard is None or self.session_guard.session is None:
            return None
        return self.session_guard.session.user

    async def _load_sdk(self, sdk: Optional[GatewaySdk], gateway: PaymentGateway) -> GatewaySdk:
        display = GATEWAY_NAMES.get(gateway.value, gateway.value)
        if sdk is None:
            logger.error("No SDK configured for %s", display)
            raise GatewayUnavailable(f"{display} is not available right now")
        try:
            await sdk.load()
        except Exception as e:
            logger.error("Failed to load %s SDK: %s", display, e)
            raise GatewayUnavailable() from e
        return sdk

    # ==================== GATEWAY A ====================

    async def _pay_in_page(self, draft: CheckoutDraft) -> PaymentOutcome:
        in_page = await self._load_sdk(self.in_page, PaymentGateway.RAZORPAY)

        receipt = f"receipt_{int(time.time() * 1000)}"
        gateway_order = await self.api.create_gateway_a_order(draft.total, receipt)
        order_ref = gateway_order.get("orderId") or gateway_order.get("id")
        if not order_ref:
            raise GatewayUnavailable("Failed to create payment order")

        user = self._current_user()
        customer = customer_details(draft.delivery_address, user)
        options = {
            "key": gateway_order.get("keyId"),
            "amount": gateway_order.get("amount"),
            "currency": gateway_order.get("currency") or PAYMENT_CURRENCY,
            "order_id": order_ref,
            "name": STORE_NAME,
            "prefill": {
                "name": customer["customerName"],
                "email": customer["customerEmail"],
                "contact": customer["customerPhone"],
            },
        }

        result = await in_page.open(options)

        if result.status is InPageStatus.DISMISSED:
            logger.info("Payment UI dismissed for %s", sanitize_id_for_logging(order_ref))
            return PaymentOutcome(PaymentStatus.DISMISSED)

        if result.status is InPageStatus.FAILED:
            logger.warning(
                "Gateway A reported failure for %s: %s",
                sanitize_id_for_logging(order_ref),
                result.error_description,
            )
            raise PaymentFailed(result.error_description or None)

        confirmed_ref = result.order_id or order_ref
        try:
            await self.api.verify_gateway_a_payment(confirmed_ref, result.payment_id, result.signature)
        except ApiError as e:
            logger.error(
                "Gateway A verification failed for %s: %s",
                sanitize_id_for_logging(confirmed_ref),
                e.message,
            )
            raise PaymentVerificationFailed() from e

        evidence = GatewayEvidence(
            gateway=PaymentGateway.RAZORPAY.value,
            order_ref=confirmed_ref,
            payment_ref=result.payment_id,
            signature=result.signature,
        )
        return await self._create_order(draft, evidence, PaymentMethod.ONLINE)

    # ==================== GATEWAY B ====================

    async def _pay_redirect(self, draft: CheckoutDraft) -> PaymentOutcome:
        redirect = await self._load_sdk(self.redirect, PaymentGateway.CASHFREE)

        order_ref = f"order_{int(time.time() * 1000)}"
        user = self._current_user()
        data = await self.api.create_gateway_b_session(
            draft.total, order_ref, customer_details(draft.delivery_address, user)
        )
        session_id = data.get("paymentSessionId") if data else None
        if not session_id:
            raise GatewayUnavailable(ERROR_PAYMENT_SESSION_MISSING)

        session = GatewaySession(
            gateway=PaymentGateway.CASHFREE.value,
            external_order_ref=data.get("orderId") or order_ref,
            client_secret_or_session_id=session_id,
        )
        await self.storage.set(
            StorageKeys.GATEWAY_B_PENDING,
            PendingRedirect(session=session, draft=draft).to_json(),
            ttl=TTL.GATEWAY_B_PENDING,
        )

        try:
            url = await redirect.checkout(session)
        except Exception as e:
            logger.error(
                "Hosted checkout init failed for %s: %s",
                sanitize_id_for_logging(session.external_order_ref),
                e,
            )
            await self.storage.delete(StorageKeys.GATEWAY_B_PENDING)
            if isinstance(e, GatewayUnavailable):
                raise
            raise GatewayUnavailable() from e

        logger.info("Redirecting to hosted checkout for %s", sanitize_id_for_logging(session.external_order_ref))
        return PaymentOutcome(PaymentStatus.REDIRECTING, redirect_url=url, session=session)

    # ==================== ORDER CREATION ====================

    async def _create_order(
        self,
        draft: CheckoutDraft,
        evidence: Optional[GatewayEvidence],
        method: PaymentMethod,
    ) -> PaymentOutcome:
        payload = self.assembler.assemble(draft, evidence, method)
        try:
            order = await self.api.create_order(payload.to_dict())
        except ApiError as e:
            raise OrderCreationFailed(e.message) from e

        confirmation = confirmation_snapshot(order, draft, method.value, evidence)
        await stash_confirmation_safely(self.storage, confirmation)
        return PaymentOutcome(
            PaymentStatus.COMPLETED, order=order, evidence=evidence, confirmation=confirmation
        )
