"""
Checkout Return Endpoints

Server-side landing point for the gateway B return URL, plus the
confirmation snapshot for reloads of the confirmation view.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from storefront.checkout.confirmation import load_last_order
from storefront.errors import (
    ApiError,
    CheckoutError,
    IncompleteAddress,
    InvalidOrderItem,
    NoItems,
    OrderCreationFailed,
    OrderDataMissing,
)
from storefront.logging import get_logger
from storefront.payments.reconciler import CallbackReconciler, ReconcileStatus, ReturnParams
from storefront.storage import DurableStorage

from .deps import get_callback_reconciler, get_client_storage

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS_CODES: dict[type, int] = {
    OrderDataMissing: 404,
    NoItems: 422,
    IncompleteAddress: 422,
    InvalidOrderItem: 422,
    OrderCreationFailed: 502,
    ApiError: 502,
}


def _to_http_error(error: CheckoutError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=400, detail=error.message)


@router.get("/order-success")
async def order_success(
    gateway: Optional[str] = None,
    order_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    storage: DurableStorage = Depends(get_client_storage),
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    """Gateway B return URL. Other hits render the stored confirmation."""
    params = ReturnParams.parse(
        {"gateway": gateway, "order_id": order_id, "payment_id": payment_id}
    )

    if not params.is_gateway_b:
        snapshot = await load_last_order(storage)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No recent order")
        return {"status": "confirmed", "confirmation": snapshot}

    try:
        result = await reconciler.handle_return(params)
    except CheckoutError as e:
        logger.error("Gateway B return failed: %s", e.message)
        raise _to_http_error(e)

    if result.status is ReconcileStatus.DUPLICATE:
        return {
            "status": result.status.value,
            "orderRef": result.order_ref,
            "confirmation": await load_last_order(storage),
        }

    return {
        "status": result.status.value,
        "orderRef": result.order_ref,
        "verification": result.verification.value if result.verification else None,
        "confirmation": result.confirmation,
    }


@router.get("/order-success/last")
async def last_order(storage: DurableStorage = Depends(get_client_storage)):
    """Last completed order snapshot, for a forced reload of the confirmation view."""
    snapshot = await load_last_order(storage)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No recent order")
    return snapshot
