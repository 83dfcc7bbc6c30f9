"""Live stock gate for the pay action.

Availability is fetched fresh on every call; cart data is never trusted
because time passes between the summary and payment steps. A failed lookup
does not block checkout, the server does the authoritative check when the
order is created.
"""

import asyncio
from typing import TYPE_CHECKING, Iterable

from storefront.checkout.models import LineItem, StockCheckResult, StockOutcome, StockReport
from storefront.errors import StockInsufficient, StockOutOfStock, StockUnknown
from storefront.logging import get_logger, sanitize_id_for_logging

if TYPE_CHECKING:
    from storefront.services.api import StorefrontApi

logger = get_logger(__name__)


class StockValidator:
    """Checks current availability for each line item."""

    def __init__(self, api: "StorefrontApi"):
        self.api = api

    async def validate(self, items: Iterable[LineItem]) -> StockReport:
        items = list(items)
        if not items:
            return StockReport()
        results = await asyncio.gather(*[self._check_item(item) for item in items])
        report = StockReport(results=list(results))
        if not report.all_ok:
            logger.info(
                "Stock check blocked checkout: %s out of stock, %s insufficient",
                len(report.out_of_stock),
                len(report.insufficient),
            )
        return report

    async def ensure_available(self, items: Iterable[LineItem]) -> StockReport:
        """
        Validate and raise on any blocking item.

        Raises:
            StockOutOfStock: at least one item has no stock
            StockInsufficient: requested quantity exceeds availability
        """
        report = await self.validate(items)
        if report.out_of_stock:
            raise StockOutOfStock(report, report.describe())
        if report.insufficient:
            raise StockInsufficient(report, report.describe())
        return report

    async def _check_item(self, item: LineItem) -> StockCheckResult:
        requested = max(1, item.quantity)
        if not item.product_id:
            return StockCheckResult(
                product_id="",
                name=item.name,
                requested_qty=requested,
                available_qty=None,
                outcome=StockOutcome.UNKNOWN,
                error=StockUnknown("Item has no product id"),
            )

        try:
            product = await self.api.get_product(item.product_id)
        except Exception as e:
            # Best-effort gate: an unreachable product must not strand the customer
            logger.warning(
                "Error checking stock for product %s: %s",
                sanitize_id_for_logging(item.product_id),
                e,
            )
            return StockCheckResult(
                product_id=item.product_id,
                name=item.name,
                requested_qty=requested,
                available_qty=None,
                outcome=StockOutcome.UNKNOWN,
                error=StockUnknown(str(e) or None),
            )

        if not product.is_available:
            outcome = StockOutcome.OUT_OF_STOCK
        elif product.stock < requested:
            outcome = StockOutcome.INSUFFICIENT
        else:
            outcome = StockOutcome.OK

        return StockCheckResult(
            product_id=item.product_id,
            name=item.name or product.name or "Product",
            requested_qty=requested,
            available_qty=product.stock,
            outcome=outcome,
        )
