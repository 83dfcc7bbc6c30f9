"""Order payload assembly.

Pure transform from a CheckoutDraft (plus optional gateway evidence) to the
order-creation request. No network or storage access happens here, and prices
come from the draft's agreed totals, never from live product prices.
"""

from typing import Optional

from storefront.checkout.models import (
    CheckoutDraft,
    DeliveryAddress,
    GatewayEvidence,
    PendingOrderPayload,
)
from storefront.errors import ERROR_INVALID_QUANTITY, IncompleteAddress, InvalidOrderItem, NoItems
from storefront.payments.constants import PaymentMethod
from storefront.services.money import round_money, to_float


class OrderAssembler:
    """Builds PendingOrderPayload objects."""

    def assemble(
        self,
        draft: CheckoutDraft,
        evidence: Optional[GatewayEvidence] = None,
        payment_method: PaymentMethod = PaymentMethod.ONLINE,
    ) -> PendingOrderPayload:
        """
        Build the order-creation payload.

        Args:
            draft: Checkout draft from the summary step
            evidence: Gateway confirmation, absent for cash on delivery
            payment_method: online or cod

        Returns:
            PendingOrderPayload, byte-identical for identical inputs

        Raises:
            NoItems: draft has no line items
            IncompleteAddress: any required address field missing
            InvalidOrderItem: a line item has no product id or a quantity below 1
        """
        if not draft.items:
            raise NoItems()

        address = draft.delivery_address
        if address is None:
            raise IncompleteAddress(list(DeliveryAddress.REQUIRED_FIELDS))
        missing = address.missing_fields()
        if missing:
            raise IncompleteAddress(missing)

        order_items = []
        for item in draft.items:
            if not item.product_id:
                raise InvalidOrderItem(f"Invalid product ID for item: {item.name or 'Unknown'}")
            if item.quantity < 1:
                raise InvalidOrderItem(f"{ERROR_INVALID_QUANTITY}: {item.name or 'Unknown'} ({item.quantity})")
            order_items.append(
                {
                    "product": item.product_id,
                    "name": item.name or "Product",
                    "quantity": item.quantity,
                    "price": to_float(round_money(item.price)),
                    "size": item.size,
                    "image": item.image,
                }
            )

        shipping_address = {"type": "home", **address.to_dict()}

        return PendingOrderPayload(
            order_items=order_items,
            shipping_address=shipping_address,
            payment_method=PaymentMethod(payment_method).value,
            items_price=to_float(round_money(draft.subtotal)),
            shipping_price=to_float(round_money(draft.shipping)),
            discount_price=to_float(round_money(draft.discount)),
            total_price=to_float(round_money(draft.total)),
            payment_gateway=evidence.gateway if evidence else draft.selected_gateway or None,
            coupon={"code": draft.coupon_code} if draft.coupon_code else None,
            gateway_evidence=evidence.to_dict() if evidence else None,
        )
