"""Token index and revocation storage.

Two interchangeable backends share one contract:

- ``RedisTokenStore`` - shared across processes, expiry via native key TTLs.
- ``InMemoryTokenStore`` - single process, expiry checked lazily on access.

Key spaces (identical in both backends):

- ``jwt:active:<token>``     -> username, TTL = token lifetime
- ``user:tokens:<username>`` -> set of tokens, TTL reset to a full token
  lifetime on every add (so older members live as long as the newest one)
- ``jwt:blacklist:<token>``  -> username, TTL = token's remaining lifetime

Every backend failure surfaces as ``TokenStoreError`` except in
``is_blacklisted``, which fails open: an unreachable store must not lock
every user out, so a revocation may go unenforced during an outage.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authhub.services.errors import TokenStoreError

logger = logging.getLogger(__name__)

ACTIVE_PREFIX = "jwt:active:"
BLACKLIST_PREFIX = "jwt:blacklist:"
USER_TOKENS_PREFIX = "user:tokens:"


class TokenStore(ABC):
    """Contract shared by all token store backends. TTLs are in seconds."""

    storage_type: str = "UNKNOWN"

    @abstractmethod
    async def put_active(self, token: str, username: str, ttl: int) -> None: ...

    @abstractmethod
    async def add_to_user_set(self, username: str, token: str, ttl: int) -> None: ...

    @abstractmethod
    async def is_blacklisted(self, token: str) -> bool: ...

    @abstractmethod
    async def blacklist(self, token: str, username: str, remaining_ttl: int) -> None: ...

    @abstractmethod
    async def remove_active(self, token: str) -> None: ...

    @abstractmethod
    async def remove_from_user_set(self, username: str, token: str) -> None: ...

    @abstractmethod
    async def members_of_user_set(self, username: str) -> set[str]: ...

    @abstractmethod
    async def delete_user_set(self, username: str) -> None: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    value: str
    expires_at: float


@dataclass
class _SetEntry:
    members: set[str]
    expires_at: float


class InMemoryTokenStore(TokenStore):
    """Process-local store. Not shared between workers or restarts.

    All maps are guarded by one lock; set membership is returned as a copy
    so callers can iterate while other requests modify the set.
    """

    storage_type = "IN_MEMORY"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._active: dict[str, _Entry] = {}
        self._blacklisted: dict[str, _Entry] = {}
        self._user_tokens: dict[str, _SetEntry] = {}

    def _purge_expired(self) -> None:
        """Drop expired entries. Caller holds the lock."""
        now = self._clock()
        for table in (self._active, self._blacklisted, self._user_tokens):
            expired = [key for key, entry in table.items() if entry.expires_at <= now]
            for key in expired:
                del table[key]

    def _live(self, table: dict, key: str):
        """Return the entry for ``key`` unless it has expired. Caller holds the lock."""
        entry = table.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del table[key]
            return None
        return entry

    async def put_active(self, token: str, username: str, ttl: int) -> None:
        with self._lock:
            self._purge_expired()
            self._active[token] = _Entry(username, self._clock() + ttl)

    async def add_to_user_set(self, username: str, token: str, ttl: int) -> None:
        with self._lock:
            entry = self._live(self._user_tokens, username)
            expires_at = self._clock() + ttl
            if entry is None:
                self._user_tokens[username] = _SetEntry({token}, expires_at)
            else:
                entry.members.add(token)
                entry.expires_at = expires_at

    async def is_blacklisted(self, token: str) -> bool:
        with self._lock:
            return self._live(self._blacklisted, token) is not None

    async def blacklist(self, token: str, username: str, remaining_ttl: int) -> None:
        if remaining_ttl <= 0:
            return
        with self._lock:
            self._purge_expired()
            self._blacklisted[token] = _Entry(username, self._clock() + remaining_ttl)

    async def remove_active(self, token: str) -> None:
        with self._lock:
            self._active.pop(token, None)

    async def remove_from_user_set(self, username: str, token: str) -> None:
        with self._lock:
            entry = self._live(self._user_tokens, username)
            if entry is None:
                return
            entry.members.discard(token)
            if not entry.members:
                del self._user_tokens[username]

    async def members_of_user_set(self, username: str) -> set[str]:
        with self._lock:
            entry = self._live(self._user_tokens, username)
            return set(entry.members) if entry else set()

    async def delete_user_set(self, username: str) -> None:
        with self._lock:
            self._user_tokens.pop(username, None)

    def is_active(self, token: str) -> bool:
        """Whether ``token`` is still indexed as active."""
        with self._lock:
            return self._live(self._active, token) is not None


class RedisTokenStore(TokenStore):
    """Redis-backed store. Per-key atomicity is provided by Redis itself."""

    storage_type = "REDIS"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 2.0) -> "RedisTokenStore":
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def put_active(self, token: str, username: str, ttl: int) -> None:
        try:
            await self.client.set(f"{ACTIVE_PREFIX}{token}", username, ex=ttl)
        except RedisError as e:
            raise TokenStoreError(f"Failed to store active token: {e}") from e

    async def add_to_user_set(self, username: str, token: str, ttl: int) -> None:
        key = f"{USER_TOKENS_PREFIX}{username}"
        try:
            pipe = self.client.pipeline()
            pipe.sadd(key, token)
            pipe.expire(key, ttl)
            await pipe.execute()
        except RedisError as e:
            raise TokenStoreError(f"Failed to add token to user set: {e}") from e

    async def is_blacklisted(self, token: str) -> bool:
        try:
            return bool(await self.client.exists(f"{BLACKLIST_PREFIX}{token}"))
        except RedisError as e:
            # Fail open, see module docstring
            logger.warning(f"Blacklist lookup failed, treating token as not revoked: {e}")
            return False

    async def blacklist(self, token: str, username: str, remaining_ttl: int) -> None:
        if remaining_ttl <= 0:
            return
        try:
            await self.client.set(f"{BLACKLIST_PREFIX}{token}", username, ex=remaining_ttl)
        except RedisError as e:
            raise TokenStoreError(f"Failed to blacklist token: {e}") from e

    async def remove_active(self, token: str) -> None:
        try:
            await self.client.delete(f"{ACTIVE_PREFIX}{token}")
        except RedisError as e:
            raise TokenStoreError(f"Failed to remove active token: {e}") from e

    async def remove_from_user_set(self, username: str, token: str) -> None:
        try:
            await self.client.srem(f"{USER_TOKENS_PREFIX}{username}", token)
        except RedisError as e:
            raise TokenStoreError(f"Failed to remove token from user set: {e}") from e

    async def members_of_user_set(self, username: str) -> set[str]:
        try:
            members = await self.client.smembers(f"{USER_TOKENS_PREFIX}{username}")
        except RedisError as e:
            raise TokenStoreError(f"Failed to read user token set: {e}") from e
        return set(members or ())

    async def delete_user_set(self, username: str) -> None:
        try:
            await self.client.delete(f"{USER_TOKENS_PREFIX}{username}")
        except RedisError as e:
            raise TokenStoreError(f"Failed to delete user token set: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


async def create_token_store(
    enable_persistent_store: bool,
    redis_url: str,
    *,
    fallback_to_memory: bool = True,
    socket_timeout: float = 2.0,
) -> TokenStore:
    """Build the configured store, verifying Redis connectivity first.

    Falls back to the in-memory store when Redis is unreachable and
    ``fallback_to_memory`` is set; otherwise raises TokenStoreError.
    """
    if not enable_persistent_store:
        logger.info("Using in-memory token store")
        return InMemoryTokenStore()

    store = RedisTokenStore.from_url(redis_url, socket_timeout=socket_timeout)
    if await store.ping():
        logger.info("Using Redis token store")
        return store

    await store.close()
    if not fallback_to_memory:
        raise TokenStoreError("Redis token store is unreachable and memory fallback is disabled")

    logger.warning(
        "Redis token store is unreachable; falling back to in-memory store. "
        "Revocations will not be shared between processes."
    )
    return InMemoryTokenStore()
