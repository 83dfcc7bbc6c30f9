"""Confirmation view data.

After an order is created the confirmation snapshot normally travels in
navigation state. A short-lived durable copy lets a forced reload of the
confirmation view still render.
"""
import json
from typing import TYPE_CHECKING, Any, Optional

from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.money import to_float
from storefront.storage import TTL, DurableStorage, StorageKeys

if TYPE_CHECKING:
    from storefront.checkout.models import CheckoutDraft, GatewayEvidence
    from storefront.services.models import Order

logger = get_logger(__name__)


def confirmation_snapshot(
    order: "Order",
    draft: "CheckoutDraft",
    payment_method: str,
    evidence: Optional["GatewayEvidence"] = None,
) -> dict[str, Any]:
    """What the confirmation view needs to render without another fetch."""
    return {
        "order": order.model_dump(by_alias=True, mode="json"),
        "orderId": order.reference,
        "orderItems": [item.to_dict() for item in draft.items],
        "totalPrice": to_float(draft.subtotal),
        "shipping": to_float(draft.shipping),
        "discount": to_float(draft.discount),
        "finalTotal": to_float(draft.total),
        "paymentMethod": payment_method,
        "paymentGateway": evidence.gateway if evidence else None,
        "verification": evidence.verification.value if evidence else None,
        "couponCode": draft.coupon_code,
        "deliveryAddress": draft.delivery_address.to_dict() if draft.delivery_address else None,
    }


async def stash_last_order(storage: DurableStorage, snapshot: dict[str, Any]) -> None:
    await storage.set(
        StorageKeys.LAST_COMPLETED_ORDER,
        json.dumps(snapshot, default=str),
        ttl=TTL.LAST_COMPLETED_ORDER,
    )


async def stash_confirmation_safely(storage: DurableStorage, snapshot: dict[str, Any]) -> bool:
    """
    Stash after an order already exists.

    The order cannot be undone, so a storage failure here is logged and
    reported as False instead of surfacing as a checkout failure. The
    snapshot still reaches the caller through navigation state.
    """
    try:
        await stash_last_order(storage, snapshot)
    except Exception as e:
        logger.error(
            "Failed to stash confirmation for order %s: %s",
            sanitize_id_for_logging(snapshot.get("orderId")),
            e,
        )
        return False
    return True


async def load_last_order(storage: DurableStorage) -> Optional[dict[str, Any]]:
    raw = await storage.get(StorageKeys.LAST_COMPLETED_ORDER)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable last-order snapshot")
        await storage.delete(StorageKeys.LAST_COMPLETED_ORDER)
        return None
    return data if isinstance(data, dict) else None


async def resolve_confirmation(
    nav_state: Optional[dict[str, Any]], storage: DurableStorage
) -> Optional[dict[str, Any]]:
    """Navigation state first, then the durable snapshot, else None."""
    if nav_state:
        return nav_state
    return await load_last_order(storage)
