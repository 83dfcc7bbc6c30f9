"""
Shared Dependencies for Routers

Lazy-loaded singletons; per-request objects are built on top of them.
"""

from typing import Optional

from fastapi import Depends, Header

from storefront.payments.reconciler import CallbackReconciler, ReconciliationRegistry
from storefront.services.api import StorefrontApi
from storefront.storage import DurableStorage, RedisStorage

DEFAULT_CLIENT_ID = "anonymous"

# ==================== LAZY SINGLETONS ====================

_storefront_api: Optional[StorefrontApi] = None
_reconciliation_registry: Optional[ReconciliationRegistry] = None


def get_storefront_api() -> StorefrontApi:
    """Get or create StorefrontApi singleton (lazy loaded)"""
    global _storefront_api
    if _storefront_api is None:
        _storefront_api = StorefrontApi()
    return _storefront_api


def get_reconciliation_registry() -> ReconciliationRegistry:
    """Process-wide guards, so duplicate deliveries across requests are caught too."""
    global _reconciliation_registry
    if _reconciliation_registry is None:
        _reconciliation_registry = ReconciliationRegistry()
    return _reconciliation_registry


# ==================== PER-REQUEST ====================

def get_client_id(
    x_client_id: Optional[str] = Header(None, alias="X-Client-Id"),
) -> str:
    return (x_client_id or "").strip() or DEFAULT_CLIENT_ID


def get_client_storage(client_id: str = Depends(get_client_id)) -> DurableStorage:
    """Durable storage namespace of the calling client."""
    return RedisStorage(client_id)


def get_callback_reconciler(
    storage: DurableStorage = Depends(get_client_storage),
    api: StorefrontApi = Depends(get_storefront_api),
    registry: ReconciliationRegistry = Depends(get_reconciliation_registry),
    client_id: str = Depends(get_client_id),
) -> CallbackReconciler:
    # Guards are per client, matching the storage namespace the draft lives in
    return CallbackReconciler(api, storage, registry=registry, scope=client_id)


# ==================== SHUTDOWN HELPERS ====================

async def shutdown_services():
    """Cleanly close singleton services (http clients, etc.)."""
    global _storefront_api
    if _storefront_api is not None:
        try:
            await _storefront_api.aclose()
        finally:
            _storefront_api = None
