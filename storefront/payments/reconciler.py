"""
Callback Reconciler

Turns a gateway B return (a fresh page load on the return URL) into at most
one order-creation call. The same return URL may be delivered more than
once, the payment id may be an unexpanded placeholder, and the draft only
exists in durable storage.

Arrival on the return URL is itself gateway-asserted evidence of a payment.
When nothing else can be verified the order is still created, tagged
unverified-but-redirected, so a paying customer is never stranded.
"""

import json
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import parse_qs, urlsplit

from storefront.checkout.assembler import OrderAssembler
from storefront.checkout.confirmation import confirmation_snapshot, stash_confirmation_safely
from storefront.checkout.models import GatewayEvidence, PendingRedirect
from storefront.errors import ApiError, OrderCreationFailed, OrderDataMissing
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.api import StorefrontApi
from storefront.services.models import Order
from storefront.storage import DurableStorage, StorageKeys

from .constants import (
    RETURN_PARAM_GATEWAY,
    RETURN_PARAM_ORDER_ID,
    RETURN_PARAM_PAYMENT_ID,
    PaymentGateway,
    PaymentMethod,
    VerificationStatus,
    is_placeholder_payment_id,
    normalize_gateway,
)

logger = get_logger(__name__)

UNVERIFIED_TAG = VerificationStatus.UNVERIFIED_REDIRECT.value


@dataclass(frozen=True)
class ReturnParams:
    """Query parameters of a gateway return URL."""
    gateway: str
    order_id: str
    payment_id: Optional[str] = None

    @classmethod
    def parse(cls, source: Union[str, Mapping[str, Any]]) -> "ReturnParams":
        """Accepts a full URL, a bare query string, or an already-parsed mapping."""
        if isinstance(source, Mapping):
            values = {k: v for k, v in source.items() if v is not None}
        else:
            query = urlsplit(source).query if "?" in source or "://" in source else source
            values = {k: v[0] for k, v in parse_qs(query).items() if v}

        return cls(
            gateway=normalize_gateway(str(values.get(RETURN_PARAM_GATEWAY, ""))),
            order_id=str(values.get(RETURN_PARAM_ORDER_ID, "")).strip(),
            payment_id=values.get(RETURN_PARAM_PAYMENT_ID),
        )

    @property
    def is_gateway_b(self) -> bool:
        return self.gateway == PaymentGateway.CASHFREE.value

    @property
    def has_real_payment_id(self) -> bool:
        return not is_placeholder_payment_id(self.payment_id)


class GuardState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"


class ReconciliationGuard:
    """
    Single-shot flag for one redirect return.

    idle -> processing -> done. The processing transition happens without
    suspending, so of two near-simultaneous invocations only the first wins.
    A guard goes back to idle only when the return was turned away before
    any order call (no pending record), so the real delivery can still run.
    """

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        self.state = GuardState.IDLE

    @property
    def processed(self) -> bool:
        return self.state is not GuardState.IDLE

    def try_acquire(self) -> bool:
        if self.state is not GuardState.IDLE:
            return False
        self.state = GuardState.PROCESSING
        return True

    def finish(self) -> None:
        self.state = GuardState.DONE

    def release(self) -> None:
        if self.state is GuardState.PROCESSING:
            self.state = GuardState.IDLE


class ReconciliationRegistry:
    """One guard per (client scope, external order reference), bounded LRU."""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._guards: OrderedDict[tuple[str, str], ReconciliationGuard] = OrderedDict()

    def guard_for(self, order_ref: str, scope: str = "") -> ReconciliationGuard:
        key = (scope, order_ref)
        guard = self._guards.get(key)
        if guard is None:
            guard = ReconciliationGuard(order_ref)
            self._guards[key] = guard
            while len(self._guards) > self.max_entries:
                self._guards.popitem(last=False)
        else:
            self._guards.move_to_end(key)
        return guard

    def __len__(self) -> int:
        return len(self._guards)


class ReconcileStatus(str, Enum):
    COMPLETED = "completed"
    IGNORED = "ignored"  # not a gateway B return
    DUPLICATE = "duplicate"  # already handled for this order ref


@dataclass
class ReconciliationResult:
    status: ReconcileStatus
    order_ref: Optional[str] = None
    order: Optional[Order] = None
    evidence: Optional[GatewayEvidence] = None
    confirmation: Optional[dict[str, Any]] = None

    @property
    def verification(self) -> Optional[VerificationStatus]:
        return self.evidence.verification if self.evidence else None


class CallbackReconciler:
    """Completes gateway B checkouts on return from the hosted page."""

    def __init__(
        self,
        api: StorefrontApi,
        storage: DurableStorage,
        *,
        assembler: Optional[OrderAssembler] = None,
        registry: Optional[ReconciliationRegistry] = None,
        scope: str = "",
    ):
        self.api = api
        self.storage = storage
        self.assembler = assembler if assembler is not None else OrderAssembler()
        # Default registry is scoped to this instance (one page lifetime)
        self.registry = registry if registry is not None else ReconciliationRegistry()
        self.scope = scope

    async def handle_return(self, source: Union[str, Mapping[str, Any], ReturnParams]) -> ReconciliationResult:
        """
        Process one return-URL delivery.

        Raises:
            OrderDataMissing: no pending record for this order reference
            OrderCreationFailed: the order-creation call failed
            NoItems / IncompleteAddress / InvalidOrderItem: stored draft not orderable
        """
        params = source if isinstance(source, ReturnParams) else ReturnParams.parse(source)
        if not params.is_gateway_b:
            return ReconciliationResult(ReconcileStatus.IGNORED)

        order_ref = params.order_id
        if not order_ref:
            logger.error("Gateway B return without order_id")
            raise OrderDataMissing()

        guard = self.registry.guard_for(order_ref, self.scope)
        if not guard.try_acquire():
            logger.info("Return for %s already processed, skipping", sanitize_id_for_logging(order_ref))
            return ReconciliationResult(ReconcileStatus.DUPLICATE, order_ref=order_ref)

        try:
            pending = await self._load_pending(order_ref)
        except BaseException:
            guard.release()
            raise
        if pending is None:
            # Nothing was ordered; the right client may still deliver this return
            guard.release()
            raise OrderDataMissing()

        try:
            try:
                evidence = await self._collect_evidence(params)
                payload = self.assembler.assemble(pending.draft, evidence, PaymentMethod.ONLINE)
                try:
                    order = await self.api.create_order(payload.to_dict())
                except ApiError as e:
                    logger.error(
                        "Order creation failed for %s: %s", sanitize_id_for_logging(order_ref), e.message
                    )
                    raise OrderCreationFailed(e.message) from e
            finally:
                # Consumed either way; a stale draft must never be resubmitted
                await self.storage.delete(StorageKeys.GATEWAY_B_PENDING)
        finally:
            guard.finish()

        confirmation = confirmation_snapshot(order, pending.draft, PaymentMethod.ONLINE.value, evidence)
        await stash_confirmation_safely(self.storage, confirmation)
        logger.info(
            "Order %s created for gateway B ref %s (%s)",
            sanitize_id_for_logging(order.reference),
            sanitize_id_for_logging(order_ref),
            evidence.verification.value,
        )
        return ReconciliationResult(
            ReconcileStatus.COMPLETED,
            order_ref=order_ref,
            order=order,
            evidence=evidence,
            confirmation=confirmation,
        )

    async def _load_pending(self, order_ref: str) -> Optional[PendingRedirect]:
        raw = await self.storage.get(StorageKeys.GATEWAY_B_PENDING)
        if not raw:
            logger.error("No pending gateway B record for %s", sanitize_id_for_logging(order_ref))
            return None
        try:
            pending = PendingRedirect.from_json(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error("Corrupted pending gateway B record: %s", e)
            await self.storage.delete(StorageKeys.GATEWAY_B_PENDING)
            return None

        if pending.session.external_order_ref != order_ref:
            # Belongs to another attempt; leave it for that return
            logger.error(
                "Pending gateway B record is for %s, return is for %s",
                sanitize_id_for_logging(pending.session.external_order_ref),
                sanitize_id_for_logging(order_ref),
            )
            return None
        return pending

    async def _collect_evidence(self, params: ReturnParams) -> GatewayEvidence:
        """Best obtainable proof of payment. Never raises on gateway errors."""
        order_ref = params.order_id
        gateway = PaymentGateway.CASHFREE.value

        if params.has_real_payment_id:
            payment_id = params.payment_id.strip()
            try:
                await self.api.verify_gateway_b_payment(order_ref, payment_id)
                return GatewayEvidence(gateway, order_ref, payment_id, verification=VerificationStatus.VERIFIED)
            except ApiError as e:
                logger.warning(
                    "Verification failed for %s: %s", sanitize_id_for_logging(order_ref), e.message
                )
                return self._unverified(order_ref, payment_id)

        try:
            data = await self.api.lookup_gateway_b_payment(order_ref)
        except ApiError as e:
            logger.warning("Status lookup failed for %s: %s", sanitize_id_for_logging(order_ref), e.message)
            return self._unverified(order_ref, None)

        resolved = (data or {}).get("paymentId")
        if resolved and not is_placeholder_payment_id(str(resolved)):
            return GatewayEvidence(gateway, order_ref, str(resolved), verification=VerificationStatus.RESOLVED)
        return self._unverified(order_ref, None)

    def _unverified(self, order_ref: str, payment_id: Optional[str]) -> GatewayEvidence:
        logger.warning(
            "Proceeding with order for %s: %s, needs manual reconciliation",
            sanitize_id_for_logging(order_ref),
            UNVERIFIED_TAG,
        )
        return GatewayEvidence(
            PaymentGateway.CASHFREE.value,
            order_ref,
            payment_id,
            verification=VerificationStatus.UNVERIFIED_REDIRECT,
        )
