"""
Durable Client Storage

Key-value storage that survives page loads (the browser's localStorage /
sessionStorage equivalent). The checkout core only ever touches the keys
listed in StorageKeys; everything else in the namespace (cart, wishlist,
addresses) belongs to other features.

Production backend is Upstash Redis, one key namespace per client.
"""

import os
from typing import Optional, Protocol

from upstash_redis.asyncio import Redis as AsyncRedis

# Upstash uses REST_URL and REST_TOKEN
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


class StorageKeys:
    """Durable keys owned by the checkout core."""

    # Auth subset - everything under this prefix is cleared on logout
    AUTH_PREFIX = "auth:"
    TOKEN = "auth:token"
    SESSION = "auth:session"  # structured {user, token, loginTimestamp} blob
    LOGIN_TIMESTAMP = "auth:login_ts"
    USER = "auth:user"

    # Checkout subset - written before a redirect, deleted once consumed
    GATEWAY_B_PENDING = "checkout:gateway_b"
    LAST_COMPLETED_ORDER = "checkout:last_order"

    AUTH_KEYS = (TOKEN, SESSION, LOGIN_TIMESTAMP, USER)

    @staticmethod
    def client_namespace(client_id: str) -> str:
        return f"storefront:{client_id}:"


class TTL:
    """Time-to-live constants for durable keys (in seconds)."""

    GATEWAY_B_PENDING = 3600  # 1 hour to complete the hosted payment page
    LAST_COMPLETED_ORDER = 900  # 15 minutes


class DurableStorage(Protocol):
    """Async string key-value store surviving page lifetimes."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class RedisStorage:
    """DurableStorage over Upstash Redis, scoped to one client namespace."""

    def __init__(self, client_id: str, redis: Optional[AsyncRedis] = None):
        self.namespace = StorageKeys.client_namespace(client_id)
        self._redis = redis

    @property
    def redis(self) -> AsyncRedis:
        """Get Redis client (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[str]:
        value = await self.redis.get(self._key(key))
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.redis.set(self._key(key), value, ex=ttl)
        else:
            await self.redis.set(self._key(key), value)

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        await self.redis.delete(*(self._key(k) for k in keys))
