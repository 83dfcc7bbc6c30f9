"""Checkout models with Decimal-based pricing.

Everything here that crosses a page lifetime (the gateway B pending record)
round-trips through to_dict/from_dict as JSON-safe values.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from storefront.errors import StockUnknown
from storefront.payments.constants import VerificationStatus
from storefront.services.money import to_decimal


@dataclass
class LineItem:
    """Single item being checked out, priced as the user saw it."""
    product_id: str
    name: str
    quantity: int
    price: Decimal
    size: Optional[str] = None
    image: Optional[str] = None

    def __post_init__(self):
        self.price = to_decimal(self.price)
        self.quantity = int(self.quantity)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": str(self.price),
            "size": self.size,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        """Accepts both our own shape and cart rows (product/productId, selectedPrice)."""
        product = data.get("product")
        if isinstance(product, dict):
            product = product.get("_id") or product.get("id")
        product_id = data.get("product_id") or data.get("productId") or product or data.get("id")
        price = data.get("selectedPrice") or data.get("price")
        quantity = data.get("quantity")
        if quantity is None or quantity == "":
            quantity = 1
        return cls(
            product_id=str(product_id) if product_id else "",
            name=data.get("name") or "Product",
            quantity=int(quantity),
            price=to_decimal(price),
            size=data.get("size"),
            image=data.get("image"),
        )


@dataclass
class DeliveryAddress:
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    REQUIRED_FIELDS = ("name", "phone", "address", "city", "state", "pincode")

    def missing_fields(self) -> list[str]:
        return [f for f in self.REQUIRED_FIELDS if not str(getattr(self, f) or "").strip()]

    def to_dict(self) -> dict:
        return {f: getattr(self, f) for f in self.REQUIRED_FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryAddress":
        return cls(**{f: (str(data[f]) if data.get(f) is not None else None) for f in cls.REQUIRED_FIELDS})


@dataclass
class CheckoutDraft:
    """Output of the order summary step; totals are final once produced."""
    items: list[LineItem]
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    delivery_address: Optional[DeliveryAddress]
    selected_gateway: str
    coupon_code: Optional[str] = None

    def __post_init__(self):
        self.subtotal = to_decimal(self.subtotal)
        self.shipping = to_decimal(self.shipping)
        self.discount = to_decimal(self.discount)
        self.total = to_decimal(self.total)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "subtotal": str(self.subtotal),
            "shipping": str(self.shipping),
            "discount": str(self.discount),
            "total": str(self.total),
            "delivery_address": self.delivery_address.to_dict() if self.delivery_address else None,
            "selected_gateway": self.selected_gateway,
            "coupon_code": self.coupon_code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckoutDraft":
        address = data.get("delivery_address")
        return cls(
            items=[LineItem.from_dict(item) for item in data.get("items", [])],
            subtotal=to_decimal(data.get("subtotal")),
            shipping=to_decimal(data.get("shipping")),
            discount=to_decimal(data.get("discount")),
            total=to_decimal(data.get("total")),
            delivery_address=DeliveryAddress.from_dict(address) if address else None,
            selected_gateway=data.get("selected_gateway", ""),
            coupon_code=data.get("coupon_code"),
        )


@dataclass
class GatewaySession:
    """A payment session opened with one gateway."""
    gateway: str
    external_order_ref: str
    client_secret_or_session_id: str
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "gateway": self.gateway,
            "external_order_ref": self.external_order_ref,
            "client_secret_or_session_id": self.client_secret_or_session_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GatewaySession":
        return cls(
            gateway=data["gateway"],
            external_order_ref=data["external_order_ref"],
            client_secret_or_session_id=data.get("client_secret_or_session_id", ""),
            created_at=data.get("created_at", ""),
        )


@dataclass
class PendingRedirect:
    """What gateway B needs to survive the trip to the hosted page and back."""
    session: GatewaySession
    draft: CheckoutDraft

    def to_json(self) -> str:
        return json.dumps({"session": self.session.to_dict(), "draft": self.draft.to_dict()})

    @classmethod
    def from_json(cls, raw: str) -> "PendingRedirect":
        data = json.loads(raw)
        return cls(
            session=GatewaySession.from_dict(data["session"]),
            draft=CheckoutDraft.from_dict(data["draft"]),
        )


@dataclass
class GatewayEvidence:
    """Proof of payment attached to the order-creation request."""
    gateway: str
    order_ref: str
    payment_ref: Optional[str] = None
    signature: Optional[str] = None
    verification: VerificationStatus = VerificationStatus.VERIFIED

    @property
    def is_verified(self) -> bool:
        return self.verification is not VerificationStatus.UNVERIFIED_REDIRECT

    def to_dict(self) -> dict:
        data = {
            "gateway": self.gateway,
            "orderRef": self.order_ref,
            "paymentRef": self.payment_ref,
            "verification": self.verification.value,
        }
        if self.signature:
            data["signature"] = self.signature
        return data


@dataclass
class PendingOrderPayload:
    """Normalized order-creation request."""
    order_items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    payment_method: str
    items_price: float
    shipping_price: float
    discount_price: float
    total_price: float
    payment_gateway: Optional[str] = None
    coupon: Optional[dict[str, str]] = None
    gateway_evidence: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            "orderItems": self.order_items,
            "shippingAddress": self.shipping_address,
            "paymentMethod": self.payment_method,
            "paymentGateway": self.payment_gateway,
            "itemsPrice": self.items_price,
            "shippingPrice": self.shipping_price,
            "discountPrice": self.discount_price,
            "totalPrice": self.total_price,
            "coupon": self.coupon,
            "gatewayEvidence": self.gateway_evidence,
        }

    def to_json(self) -> str:
        """Canonical serialization; identical drafts give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StockOutcome(str, Enum):
    OK = "ok"
    INSUFFICIENT = "insufficient"
    OUT_OF_STOCK = "out_of_stock"
    UNKNOWN = "unknown"


@dataclass
class StockCheckResult:
    product_id: str
    name: str
    requested_qty: int
    available_qty: Optional[int]
    outcome: StockOutcome
    error: Optional[StockUnknown] = None

    @property
    def in_stock(self) -> bool:
        return self.outcome in (StockOutcome.OK, StockOutcome.INSUFFICIENT)

    @property
    def is_blocking(self) -> bool:
        return self.outcome in (StockOutcome.OUT_OF_STOCK, StockOutcome.INSUFFICIENT)


@dataclass
class StockReport:
    """Fresh availability for every line item; never persisted."""
    results: list[StockCheckResult] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        """Unknown items do not block; the server re-checks at order creation."""
        return not any(r.is_blocking for r in self.results)

    @property
    def out_of_stock(self) -> list[StockCheckResult]:
        return [r for r in self.results if r.outcome is StockOutcome.OUT_OF_STOCK]

    @property
    def insufficient(self) -> list[StockCheckResult]:
        return [r for r in self.results if r.outcome is StockOutcome.INSUFFICIENT]

    @property
    def unknown(self) -> list[StockCheckResult]:
        return [r for r in self.results if r.outcome is StockOutcome.UNKNOWN]

    def describe(self) -> str:
        """Actionable message listing the blocking items."""
        lines = []
        if self.out_of_stock:
            lines.append("Out of Stock:")
            lines.extend(f"- {r.name}" for r in self.out_of_stock)
        if self.insufficient:
            lines.append("Insufficient Stock:")
            lines.extend(
                f"- {r.name} - Requested: {r.requested_qty}, Available: {r.available_qty}"
                for r in self.insufficient
            )
        return "\n".join(lines)
