"""
Tests for confirmation view data
"""

import json

import pytest

from storefront.checkout.confirmation import resolve_confirmation, stash_last_order
from storefront.storage import TTL, StorageKeys


@pytest.mark.asyncio
async def test_navigation_state_preferred(storage):
    await stash_last_order(storage, {"orderId": "ord-old"})

    assert await resolve_confirmation({"orderId": "ord-new"}, storage) == {"orderId": "ord-new"}


@pytest.mark.asyncio
async def test_falls_back_to_durable_snapshot(storage):
    await stash_last_order(storage, {"orderId": "ord-1"})

    assert await resolve_confirmation(None, storage) == {"orderId": "ord-1"}
    assert storage.ttls[StorageKeys.LAST_COMPLETED_ORDER] == TTL.LAST_COMPLETED_ORDER


@pytest.mark.asyncio
async def test_nothing_to_render(storage):
    assert await resolve_confirmation({}, storage) is None


@pytest.mark.asyncio
async def test_unreadable_snapshot_discarded(storage):
    storage.data[StorageKeys.LAST_COMPLETED_ORDER] = "not json"

    assert await resolve_confirmation(None, storage) is None
    assert StorageKeys.LAST_COMPLETED_ORDER not in storage.data


@pytest.mark.asyncio
async def test_snapshot_is_json(storage):
    await stash_last_order(storage, {"orderId": "ord-1", "finalTotal": 750.0})

    assert json.loads(storage.data[StorageKeys.LAST_COMPLETED_ORDER])["finalTotal"] == 750.0
