"""
Tests for the HTTP return surface
"""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from conftest import FakeStorage
from storefront.app import app
from storefront.checkout.models import GatewaySession, PendingRedirect
from storefront.errors import ApiError
from storefront.payments.reconciler import ReconciliationRegistry
from storefront.routers.deps import (
    get_client_id,
    get_client_storage,
    get_reconciliation_registry,
    get_storefront_api,
)
from storefront.storage import RedisStorage, StorageKeys

RETURN_QUERY = {"gateway": "cashfree", "order_id": "order_42", "payment_id": "{payment_id}"}


@pytest.fixture
def client(fake_api, storage, sample_draft):
    """Test client with per-test storage, API and guard registry"""
    sample_draft.selected_gateway = "cashfree"
    session = GatewaySession("cashfree", "order_42", "session_abc")
    storage.data[StorageKeys.GATEWAY_B_PENDING] = PendingRedirect(session, sample_draft).to_json()

    registry = ReconciliationRegistry()
    app.dependency_overrides[get_client_storage] = lambda: storage
    app.dependency_overrides[get_storefront_api] = lambda: fake_api
    app.dependency_overrides[get_reconciliation_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_return_creates_order(client, fake_api, storage):
    response = client.get("/order-success", params=RETURN_QUERY)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["orderRef"] == "order_42"
    assert data["verification"] == "resolved"
    assert data["confirmation"]["orderId"] == "ord-1"
    assert fake_api.create_order.await_count == 1
    assert StorageKeys.GATEWAY_B_PENDING not in storage.data


def test_duplicate_delivery_returns_stored_confirmation(client, fake_api):
    client.get("/order-success", params=RETURN_QUERY)

    response = client.get("/order-success", params=RETURN_QUERY)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "duplicate"
    assert data["confirmation"]["orderId"] == "ord-1"
    assert fake_api.create_order.await_count == 1


def test_missing_pending_record_is_404(client, storage):
    storage.data.pop(StorageKeys.GATEWAY_B_PENDING)

    response = client.get("/order-success", params=RETURN_QUERY)

    assert response.status_code == 404
    assert response.json()["detail"] == "Order data not found"


def test_order_creation_failure_is_502(client, fake_api):
    fake_api.create_order = AsyncMock(side_effect=ApiError("Insufficient stock", 400))

    response = client.get("/order-success", params=RETURN_QUERY)

    assert response.status_code == 502
    assert response.json()["detail"] == "Insufficient stock"


def test_plain_visit_renders_last_order(client, storage):
    storage.data[StorageKeys.LAST_COMPLETED_ORDER] = json.dumps({"orderId": "ord-7"})

    response = client.get("/order-success")

    assert response.status_code == 200
    assert response.json() == {"status": "confirmed", "confirmation": {"orderId": "ord-7"}}


def test_last_order_endpoint(client, storage):
    assert client.get("/order-success/last").status_code == 404

    storage.data[StorageKeys.LAST_COMPLETED_ORDER] = json.dumps({"orderId": "ord-7"})

    assert client.get("/order-success/last").json() == {"orderId": "ord-7"}


def test_client_id_header_selects_namespace():
    storage = get_client_storage(get_client_id(x_client_id=" browser-1 "))

    assert isinstance(storage, RedisStorage)
    assert storage.namespace == "storefront:browser-1:"
    assert get_client_storage(get_client_id(x_client_id=None)).namespace == "storefront:anonymous:"


def test_wrong_namespace_return_does_not_block_real_client(client, fake_api, storage):
    namespaces = {"browser-1": storage}

    def storage_for(client_id: str = Depends(get_client_id)):
        return namespaces.setdefault(client_id, FakeStorage())

    app.dependency_overrides[get_client_storage] = storage_for

    stray = client.get("/order-success", params=RETURN_QUERY)
    real = client.get("/order-success", params=RETURN_QUERY, headers={"X-Client-Id": "browser-1"})

    assert stray.status_code == 404
    assert real.status_code == 200
    assert real.json()["status"] == "completed"
    assert fake_api.create_order.await_count == 1
