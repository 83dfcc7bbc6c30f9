"""
Auth Session Guard

Single source of truth for "is the user authenticated and is the token
durably committed". The in-memory session is the writer of record; durable
storage is a write-through copy consulted only at hydration or when memory
is empty.

The token lives in two durable places (the plain token key and the
structured session blob). Either may be the only survivor after a reload,
and hydration reconciles them, preferring the plain token key.
"""

import asyncio
import json
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from storefront.errors import InvalidToken, PersistenceUnverified
from storefront.logging import get_logger, mask_token
from storefront.storage import DurableStorage, StorageKeys
from storefront.utils.waiting import WaitOutcome, poll_until

logger = get_logger(__name__)

AUTH_VERIFY_ATTEMPTS = int(os.environ.get("AUTH_VERIFY_ATTEMPTS", "5"))
AUTH_VERIFY_INTERVAL = float(os.environ.get("AUTH_VERIFY_INTERVAL", "0.05"))
AUTH_READY_INTERVAL = float(os.environ.get("AUTH_READY_INTERVAL", "0.1"))
AUTH_MIN_TOKEN_LENGTH = int(os.environ.get("AUTH_MIN_TOKEN_LENGTH", "8"))
AUTH_RECENT_LOGIN_GRACE = float(os.environ.get("AUTH_RECENT_LOGIN_GRACE", "10"))

# Endpoint whose 401s are never treated as proof of an invalid token
CURRENT_USER_ENDPOINT = "/users/me"


@dataclass
class Session:
    """Authenticated session. login_timestamp is epoch milliseconds."""
    token: str
    user: Optional[dict[str, Any]] = None
    login_timestamp: Optional[int] = None
    persisted: bool = False

    def to_dict(self) -> dict:
        """Durable blob shape."""
        return {
            "user": self.user,
            "token": self.token,
            "loginTimestamp": self.login_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        login_ts = data.get("loginTimestamp")
        return cls(
            token=str(data["token"]).strip(),
            user=data.get("user"),
            login_timestamp=int(login_ts) if login_ts else None,
            persisted=True,
        )


class SessionReadiness(str, Enum):
    """
    Readiness signal for protected views.

    - ready: session in memory, or a durable token is present
    - unauthenticated: no token anywhere
    - timed_out: token present but never confirmed; views render anyway
      and let the first authenticated API call decide
    """
    READY = "ready"
    UNAUTHENTICATED = "unauthenticated"
    TIMED_OUT = "timed_out"

    @property
    def allows_render(self) -> bool:
        return self is not SessionReadiness.UNAUTHENTICATED


class AuthSessionGuard:
    """Owns the session and keeps it consistent with durable storage."""

    def __init__(
        self,
        storage: DurableStorage,
        *,
        verify_attempts: int = AUTH_VERIFY_ATTEMPTS,
        verify_interval: float = AUTH_VERIFY_INTERVAL,
        ready_interval: float = AUTH_READY_INTERVAL,
        min_token_length: int = AUTH_MIN_TOKEN_LENGTH,
        recent_login_grace: float = AUTH_RECENT_LOGIN_GRACE,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.storage = storage
        self.verify_attempts = verify_attempts
        self.verify_interval = verify_interval
        self.ready_interval = ready_interval
        self.min_token_length = min_token_length
        self.recent_login_grace = recent_login_grace
        self._clock = clock
        self._sleep = sleep
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def token(self) -> Optional[str]:
        return self._session.token if self._session else None

    @property
    def is_confirmed(self) -> bool:
        """True when an in-memory session exists and its durable write was observed."""
        return self._session is not None and self._session.persisted

    # ==================== LOGIN / SIGNUP ====================

    async def login(self, user: Optional[dict[str, Any]], token: Any) -> Session:
        """
        Establish a session and wait until the token is durably committed.

        Callers must not navigate before this resolves.

        Raises:
            InvalidToken: token empty or implausibly short
            PersistenceUnverified: durable token never matched within the window
        """
        return await self._establish(user, token, action="login")

    async def signup(self, user: Optional[dict[str, Any]], token: Any) -> Session:
        """Same contract as login, for a freshly registered account."""
        return await self._establish(user, token, action="signup")

    async def _establish(self, user: Optional[dict[str, Any]], token: Any, action: str) -> Session:
        clean_token = self._normalize_token(token)
        login_ts = int(self._clock() * 1000)

        session = Session(token=clean_token, user=user, login_timestamp=login_ts, persisted=False)
        self._session = session

        await self.storage.set(StorageKeys.TOKEN, clean_token)
        await self.storage.set(StorageKeys.LOGIN_TIMESTAMP, str(login_ts))
        if user is not None:
            await self.storage.set(StorageKeys.USER, json.dumps(user, sort_keys=True))
        await self.storage.set(StorageKeys.SESSION, json.dumps(session.to_dict(), sort_keys=True))

        async def token_committed() -> bool:
            return await self.storage.get(StorageKeys.TOKEN) == clean_token

        outcome = await poll_until(
            token_committed,
            attempts=self.verify_attempts,
            interval=self.verify_interval,
            sleep=self._sleep,
        )
        if outcome is WaitOutcome.TIMED_OUT:
            logger.error(
                "Token %s storage verification failed after %s attempts (%s)",
                mask_token(clean_token),
                self.verify_attempts,
                action,
            )
            raise PersistenceUnverified()

        session.persisted = True
        logger.info("Session established via %s", action)
        return session

    def _normalize_token(self, token: Any) -> str:
        if token is None:
            raise InvalidToken()
        clean_token = str(token).strip()
        if len(clean_token) < self.min_token_length:
            raise InvalidToken()
        return clean_token

    # ==================== HYDRATION ====================

    async def hydrate(self) -> Optional[Session]:
        """
        Rebuild the in-memory session from durable storage on cold start.

        A token alone is enough to consider the session possibly valid; the
        user object may be missing. Whichever durable copy is missing is
        rewritten from the surviving one.
        """
        if self._session is not None:
            return self._session

        raw_token = await self.storage.get(StorageKeys.TOKEN)
        token = raw_token.strip() if raw_token else ""
        blob = await self._load_blob()

        if token:
            if blob is not None and blob.token == token:
                session = blob
            else:
                session = Session(
                    token=token,
                    user=await self._load_json(StorageKeys.USER),
                    login_timestamp=await self._load_login_timestamp(),
                    persisted=True,
                )
                await self.storage.set(
                    StorageKeys.SESSION, json.dumps(session.to_dict(), sort_keys=True)
                )
        elif blob is not None and blob.token:
            session = blob
            await self.storage.set(StorageKeys.TOKEN, blob.token)
            if blob.login_timestamp:
                await self.storage.set(StorageKeys.LOGIN_TIMESTAMP, str(blob.login_timestamp))
            logger.info("Restored token key from session blob")
        else:
            return None

        self._session = session
        return session

    async def _load_blob(self) -> Optional[Session]:
        raw = await self.storage.get(StorageKeys.SESSION)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not data or not data.get("token"):
                return None
            return Session.from_dict(data)
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            # Corrupted blob - drop it, the token key is authoritative anyway
            logger.warning("Corrupted session blob: %s", e)
            await self.storage.delete(StorageKeys.SESSION)
            return None

    async def _load_json(self, key: str) -> Optional[dict[str, Any]]:
        raw = await self.storage.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    async def _load_login_timestamp(self) -> Optional[int]:
        raw = await self.storage.get(StorageKeys.LOGIN_TIMESTAMP)
        try:
            return int(raw) if raw else None
        except ValueError:
            return None

    # ==================== READINESS ====================

    async def await_ready(self, max_wait: float = 2.0) -> SessionReadiness:
        """
        Wait up to `max_wait` seconds for the session to become usable.

        Returns:
            SessionReadiness tri-state. TIMED_OUT still allows rendering.
        """
        if self.is_confirmed:
            return SessionReadiness.READY

        if self._session is None and not await self._has_durable_token():
            return SessionReadiness.UNAUTHENTICATED

        async def ready() -> bool:
            if self.is_confirmed:
                return True
            return bool(await self.storage.get(StorageKeys.TOKEN))

        attempts = max(1, int(max_wait / self.ready_interval)) if self.ready_interval > 0 else 1
        outcome = await poll_until(
            ready,
            attempts=attempts,
            interval=self.ready_interval,
            sleep=self._sleep,
        )
        if outcome is WaitOutcome.READY:
            return SessionReadiness.READY

        logger.warning("Session not confirmed within %.2fs, rendering optimistically", max_wait)
        return SessionReadiness.TIMED_OUT

    async def _has_durable_token(self) -> bool:
        if await self.storage.get(StorageKeys.TOKEN):
            return True
        return await self._load_blob() is not None

    # ==================== TOKEN ACCESS ====================

    async def bearer_token(self) -> Optional[str]:
        """Token to attach to API requests: memory first, then durable key."""
        if self._session is not None:
            return self._session.token
        raw = await self.storage.get(StorageKeys.TOKEN)
        token = raw.strip() if raw else ""
        return token or None

    async def is_recent_login(self) -> bool:
        login_ts = self._session.login_timestamp if self._session else None
        if login_ts is None:
            login_ts = await self._load_login_timestamp()
        if login_ts is None:
            return False
        elapsed = self._clock() - login_ts / 1000
        return elapsed < self.recent_login_grace

    async def handle_unauthorized(self, endpoint: str, token_sent: bool) -> bool:
        """
        React to a 401 from the API.

        Right after login a 401 is usually a propagation race, not a bad
        token, so the session is kept during the grace window. The current
        user endpoint never triggers an automatic logout while a token exists.

        Returns:
            True if the session was cleared
        """
        if not await self.bearer_token():
            logger.warning("401 with no token present, clearing session")
            await self.logout()
            return True

        if await self.is_recent_login():
            logger.warning("401 on %s shortly after login, keeping session", endpoint)
            return False

        if CURRENT_USER_ENDPOINT in endpoint:
            return False

        if token_sent:
            logger.warning("401 on %s with token attached, clearing session", endpoint)
            await self.logout()
            return True

        return False

    # ==================== LOGOUT ====================

    async def logout(self) -> None:
        """Clear the in-memory session and only the auth-scoped durable keys."""
        self._session = None
        await self.storage.delete(*StorageKeys.AUTH_KEYS)
        logger.info("Session cleared")
