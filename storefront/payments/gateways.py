"""
Gateway capabilities.

The browser-side SDK objects of each gateway are modelled as explicitly
injected capabilities with a load/aclose lifecycle instead of ambient
globals. GatewayRouter only talks to these protocols.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

from storefront.checkout.models import GatewaySession
from storefront.errors import ERROR_PAYMENT_SESSION_MISSING, GatewayUnavailable
from storefront.logging import get_logger

from .config import get_cashfree_checkout_url

logger = get_logger(__name__)


class InPageStatus(str, Enum):
    SUCCESS = "success"
    DISMISSED = "dismissed"
    FAILED = "failed"


@dataclass
class InPageResult:
    """Outcome of one in-page payment UI session."""
    status: InPageStatus
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def success(cls, order_id: str, payment_id: str, signature: str) -> "InPageResult":
        return cls(InPageStatus.SUCCESS, order_id=order_id, payment_id=payment_id, signature=signature)

    @classmethod
    def dismissed(cls) -> "InPageResult":
        return cls(InPageStatus.DISMISSED)

    @classmethod
    def failed(cls, description: Optional[str] = None) -> "InPageResult":
        return cls(InPageStatus.FAILED, error_description=description)


class GatewaySdk(Protocol):
    async def load(self) -> None:
        """Make the SDK usable. Any exception means the gateway is unavailable."""
        ...

    async def aclose(self) -> None: ...


class InPageCheckout(GatewaySdk, Protocol):
    """Gateway A: payment UI opened inside the current page."""

    async def open(self, options: dict[str, Any]) -> InPageResult: ...


class RedirectCheckout(GatewaySdk, Protocol):
    """Gateway B: hosted payment page reached by a full navigation."""

    async def checkout(self, session: GatewaySession) -> str:
        """Return the URL the browser must navigate to."""
        ...


class HostedRedirectCheckout:
    """RedirectCheckout that sends the browser to the gateway's hosted page."""

    def __init__(self, checkout_url: Optional[str] = None):
        self.checkout_url = checkout_url
        self._loaded = False

    async def load(self) -> None:
        if self._loaded:
            return
        self.checkout_url = (self.checkout_url or get_cashfree_checkout_url()).rstrip("/")
        if not self.checkout_url.startswith(("https://", "http://")):
            raise GatewayUnavailable(f"Invalid hosted checkout URL: {self.checkout_url}")
        self._loaded = True
        logger.debug("Hosted checkout ready at %s", self.checkout_url)

    async def checkout(self, session: GatewaySession) -> str:
        if not self._loaded:
            raise GatewayUnavailable()
        if not session.client_secret_or_session_id:
            raise GatewayUnavailable(ERROR_PAYMENT_SESSION_MISSING)
        query = urlencode({"payment_session_id": session.client_secret_or_session_id})
        return f"{self.checkout_url}?{query}"

    async def aclose(self) -> None:
        self._loaded = False
