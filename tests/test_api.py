"""
Tests for the storefront REST client
"""

import json
from typing import Any, Dict, List

import httpx
import pytest

from conftest import FakeStorage, no_sleep
from storefront.auth import AuthSessionGuard
from storefront.errors import ApiError
from storefront.services.api import StorefrontApi
from storefront.storage import StorageKeys

TOKEN = "abc123xyz789"


def _api(handler, session=None) -> StorefrontApi:
    api = StorefrontApi(session=session, base_url="https://shop.test/api")
    api._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return api


def _recorder(responses: Dict[str, httpx.Response], seen: List[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses[request.url.path]
    return handler


@pytest.mark.asyncio
async def test_get_product_unwraps_envelope():
    seen: List[httpx.Request] = []
    body = {"success": True, "data": {"_id": "prod-1", "name": "Linen Shirt", "price": 300, "stock": "4"}}
    api = _api(_recorder({"/api/products/prod-1": httpx.Response(200, json=body)}, seen))

    product = await api.get_product("prod-1")

    assert product.id == "prod-1"
    assert product.stock == 4
    assert product.is_available
    assert "authorization" not in seen[0].headers
    await api.aclose()


@pytest.mark.asyncio
async def test_bearer_token_attached():
    seen: List[httpx.Request] = []
    session = AuthSessionGuard(FakeStorage({StorageKeys.TOKEN: TOKEN}), sleep=no_sleep)
    body = {"success": True, "data": {"_id": "ord-1", "orderNumber": "ORD-0001"}}
    api = _api(_recorder({"/api/orders": httpx.Response(201, json=body)}, seen), session=session)

    order = await api.create_order({"orderItems": []})

    assert order.reference == "ord-1"
    assert seen[0].headers["authorization"] == f"Bearer {TOKEN}"
    assert json.loads(seen[0].content) == {"orderItems": []}
    await api.aclose()


@pytest.mark.asyncio
async def test_public_endpoint_never_carries_token():
    seen: List[httpx.Request] = []
    session = AuthSessionGuard(FakeStorage({StorageKeys.TOKEN: TOKEN}), sleep=no_sleep)
    api = _api(
        _recorder({"/api/users/login": httpx.Response(200, json={"success": True, "data": {}})}, seen),
        session=session,
    )

    await api._request("POST", "/users/login", {"phone": "9876543210"})

    assert "authorization" not in seen[0].headers
    await api.aclose()


@pytest.mark.asyncio
async def test_success_false_raises():
    body = {"success": False, "message": "Coupon not found"}
    api = _api(_recorder({"/api/coupons/code/NOPE": httpx.Response(200, json=body)}, []))

    with pytest.raises(ApiError) as exc_info:
        await api.get_coupon("NOPE")

    assert exc_info.value.message == "Coupon not found"
    await api.aclose()


@pytest.mark.asyncio
async def test_http_error_carries_status():
    api = _api(_recorder({"/api/orders": httpx.Response(500, text="boom")}, []))

    with pytest.raises(ApiError) as exc_info:
        await api.create_order({})

    assert exc_info.value.status_code == 500
    await api.aclose()


@pytest.mark.asyncio
async def test_network_error_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    api = _api(handler)

    with pytest.raises(ApiError):
        await api.get_product("prod-1")
    await api.aclose()


@pytest.mark.asyncio
async def test_unauthorized_reported_to_session():
    storage = FakeStorage({StorageKeys.TOKEN: TOKEN, "cart": "[]"})
    session = AuthSessionGuard(storage, sleep=no_sleep, clock=lambda: 1700000000.0)
    api = _api(_recorder({"/api/orders": httpx.Response(401, json={"message": "Not authorized"})}, []), session)

    with pytest.raises(ApiError) as exc_info:
        await api.create_order({})

    assert exc_info.value.status_code == 401
    # No login timestamp: not a recent login, token was sent
    assert StorageKeys.TOKEN not in storage.data
    assert "cart" in storage.data
    await api.aclose()


@pytest.mark.asyncio
async def test_gateway_requests():
    seen: List[httpx.Request] = []
    ok: Dict[str, Any] = {"success": True, "data": {"paymentSessionId": "session_abc"}}
    responses = {
        "/api/payments/create-order": httpx.Response(200, json={"success": True, "data": {"orderId": "rzp_1"}}),
        "/api/payments/verify-payment": httpx.Response(200, json={"success": True}),
        "/api/payments/cashfree/create-session": httpx.Response(200, json=ok),
        "/api/payments/cashfree/verify-payment": httpx.Response(200, json={"success": True, "data": {"paymentId": "cf_9"}}),
    }
    api = _api(_recorder(responses, seen))

    await api.create_gateway_a_order(750, "receipt_1")
    await api.verify_gateway_a_payment("rzp_1", "pay_1", "sig")
    await api.create_gateway_b_session(750, "order_42", {"customerPhone": "9876543210"})
    lookup = await api.lookup_gateway_b_payment("order_42")

    bodies = [json.loads(r.content) for r in seen]
    assert bodies[0] == {"amount": 750.0, "currency": "INR", "receipt": "receipt_1"}
    assert bodies[1] == {
        "razorpay_order_id": "rzp_1",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": "sig",
    }
    assert bodies[2]["orderId"] == "order_42"
    assert bodies[2]["customerDetails"] == {"customerPhone": "9876543210"}
    assert bodies[3] == {"orderId": "order_42", "paymentId": "placeholder"}
    assert lookup == {"paymentId": "cf_9"}
    await api.aclose()
