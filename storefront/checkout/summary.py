"""Order summary step: turns cart lines, address and coupon into a CheckoutDraft.

The totals computed here are what the customer sees and pays; nothing
downstream recomputes them.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Union

from storefront.checkout.models import CheckoutDraft, DeliveryAddress, LineItem
from storefront.errors import (
    ERROR_COUPON_INACTIVE,
    ERROR_COUPON_LIMIT_REACHED,
    ERROR_COUPON_MIN_PURCHASE,
    ERROR_COUPON_NOT_VALID_NOW,
    CouponRejected,
)
from storefront.logging import get_logger
from storefront.payments.config import get_default_gateway
from storefront.payments.constants import normalize_gateway
from storefront.services.models import Coupon
from storefront.services.money import add, percent, round_money, subtract, to_decimal

if TYPE_CHECKING:
    from storefront.services.api import StorefrontApi

logger = get_logger(__name__)

FREE_SHIPPING_THRESHOLD = Decimal("500")
SHIPPING_FEE = Decimal("50")


def shipping_for(subtotal: Decimal) -> Decimal:
    """Free shipping strictly above the threshold."""
    return Decimal("0") if to_decimal(subtotal) > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE


def coupon_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Discount amount for an already-accepted coupon."""
    if coupon.discount_type == "percentage":
        discount = round_money(percent(subtotal, coupon.discount_value), to_int=True)
        if coupon.max_discount and discount > coupon.max_discount:
            discount = coupon.max_discount
        return discount
    if coupon.discount_type == "fixed":
        return to_decimal(coupon.discount_value)
    return Decimal("0")


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def check_coupon(coupon: Coupon, subtotal: Decimal, now: Optional[datetime] = None) -> None:
    """
    Reject coupons that cannot be applied to this subtotal right now.

    Raises:
        CouponRejected: with a message suitable for the coupon field
    """
    now = _as_utc(now or datetime.now(timezone.utc))

    if to_decimal(subtotal) < coupon.min_purchase:
        raise CouponRejected(ERROR_COUPON_MIN_PURCHASE.format(minimum=coupon.min_purchase))
    if not coupon.is_active:
        raise CouponRejected(ERROR_COUPON_INACTIVE)
    if coupon.valid_from and now < _as_utc(coupon.valid_from):
        raise CouponRejected(ERROR_COUPON_NOT_VALID_NOW)
    if coupon.valid_until and now > _as_utc(coupon.valid_until):
        raise CouponRejected(ERROR_COUPON_NOT_VALID_NOW)
    if coupon.usage_limit > 0 and coupon.used_count >= coupon.usage_limit:
        raise CouponRejected(ERROR_COUPON_LIMIT_REACHED)


async def apply_coupon_code(
    api: "StorefrontApi",
    code: str,
    subtotal: Decimal,
    now: Optional[datetime] = None,
) -> Coupon:
    """Look up a coupon code and check it against the subtotal."""
    code = (code or "").upper().strip()
    if not code:
        raise CouponRejected("Please enter a coupon code")

    coupon = await api.get_coupon(code)
    check_coupon(coupon, subtotal, now)
    logger.info("Coupon %s applied", coupon.code)
    return coupon


def build_checkout_draft(
    items: Iterable[Union[LineItem, dict]],
    delivery_address: Optional[Union[DeliveryAddress, dict]],
    gateway: Optional[str] = None,
    coupon: Optional[Coupon] = None,
) -> CheckoutDraft:
    """
    Produce the draft handed from the summary step to the payment step.

    Args:
        items: Line items or raw cart rows
        delivery_address: Selected address (validated later, at assembly)
        gateway: Selected gateway name or alias; default gateway if empty
        coupon: Coupon already accepted by check_coupon

    Returns:
        CheckoutDraft with final totals
    """
    line_items = [item if isinstance(item, LineItem) else LineItem.from_dict(item) for item in items]
    if isinstance(delivery_address, dict):
        delivery_address = DeliveryAddress.from_dict(delivery_address)

    subtotal = sum((item.line_total for item in line_items), Decimal("0"))
    shipping = shipping_for(subtotal)
    discount = coupon_discount(coupon, subtotal) if coupon else Decimal("0")
    total = max(Decimal("0"), subtract(add(subtotal, shipping), discount))

    return CheckoutDraft(
        items=line_items,
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        total=total,
        delivery_address=delivery_address,
        selected_gateway=normalize_gateway(gateway) or get_default_gateway(),
        coupon_code=coupon.code if coupon else None,
    )
