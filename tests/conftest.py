"""Pytest configuration and fixtures"""
import os
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, Mock

import pytest

# Set test environment variables
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "https://test.upstash.io")
os.environ.setdefault("UPSTASH_REDIS_REST_TOKEN", "test_token")
os.environ.setdefault("STOREFRONT_API_URL", "https://shop.test/api")

from storefront.checkout.summary import build_checkout_draft  # noqa: E402
from storefront.services.models import Order, Product  # noqa: E402


class FakeStorage:
    """In-memory DurableStorage."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.data.pop(key, None)
            self.ttls.pop(key, None)


class LaggyStorage(FakeStorage):
    """Writes to `key` only become visible after `lag` reads of it."""

    def __init__(self, key: str, lag: int):
        super().__init__()
        self.key = key
        self.lag = lag
        self.reads = 0

    async def get(self, key: str) -> Optional[str]:
        if key == self.key:
            self.reads += 1
            if self.reads <= self.lag:
                return None
        return await super().get(key)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sample_address() -> Dict[str, Any]:
    return {
        "name": "Asha Rao",
        "phone": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }


@pytest.fixture
def sample_cart_rows():
    """Two cart rows: 2 x 300 + 1 x 150 = 750"""
    return [
        {"product": {"_id": "prod-1"}, "name": "Linen Shirt", "quantity": 2, "selectedPrice": 300, "size": "M"},
        {"productId": "prod-2", "name": "Canvas Tote", "quantity": 1, "price": 150},
    ]


@pytest.fixture
def sample_draft(sample_cart_rows, sample_address):
    return build_checkout_draft(sample_cart_rows, sample_address, gateway="razorpay")


@pytest.fixture
def products() -> Dict[str, Product]:
    return {
        "prod-1": Product.model_validate({"_id": "prod-1", "name": "Linen Shirt", "price": 300, "stock": 10}),
        "prod-2": Product.model_validate({"_id": "prod-2", "name": "Canvas Tote", "price": 150, "stock": 5}),
    }


@pytest.fixture
def fake_api(products):
    """StorefrontApi stand-in with async methods."""
    api = Mock()

    async def get_product(product_id):
        return products[product_id]

    api.get_product = AsyncMock(side_effect=get_product)
    api.get_coupon = AsyncMock()
    api.create_order = AsyncMock(
        return_value=Order.model_validate({"_id": "ord-1", "orderNumber": "ORD-0001", "totalPrice": 750})
    )
    api.create_gateway_a_order = AsyncMock(
        return_value={"orderId": "rzp_order_1", "keyId": "rzp_key", "amount": 75000, "currency": "INR"}
    )
    api.verify_gateway_a_payment = AsyncMock(return_value={"verified": True})
    api.create_gateway_b_session = AsyncMock(
        return_value={"paymentSessionId": "session_abc", "orderId": "order_42", "appId": "app"}
    )
    api.verify_gateway_b_payment = AsyncMock(return_value={"verified": True})
    api.lookup_gateway_b_payment = AsyncMock(return_value={"paymentId": "cf_pay_9"})
    return api
