"""Key/value list backends for the session context store."""

import fnmatch
import time
from typing import Callable, Protocol

import redis.asyncio as redis

from ..logging_config import get_logger

logger = get_logger(__name__)


class ISessionBackend(Protocol):
    """List-append store with range reads and key expiry (Redis list semantics)."""

    async def append(self, key: str, value: str) -> int:
        """Append to the end of the list at ``key``. Returns the new length."""
        ...

    async def range(self, key: str, start: int, end: int) -> list[str]:
        """Inclusive slice; negative indices count from the end."""
        ...

    async def expire(self, key: str, ttl_seconds: int) -> None:
        """(Re)set the time-to-live of ``key``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``."""
        ...

    async def scan(self, pattern: str, limit: int | None = None) -> list[str]:
        """Keys matching a glob ``pattern``."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


def _list_range(items: list[str], start: int, end: int) -> list[str]:
    size = len(items)
    if start < 0:
        start = max(size + start, 0)
    if end < 0:
        end = size + end
    if start >= size or start > end:
        return []
    return items[start : end + 1]


class InMemorySessionBackend:
    """Process-local backend. Expired keys vanish on next access."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lists: dict[str, list[str]] = {}
        self._expires_at: dict[str, float] = {}

    def _live(self, key: str) -> list[str] | None:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._lists.pop(key, None)
            self._expires_at.pop(key, None)
        return self._lists.get(key)

    async def append(self, key: str, value: str) -> int:
        items = self._live(key)
        if items is None:
            items = self._lists[key] = []
        items.append(value)
        return len(items)

    async def range(self, key: str, start: int, end: int) -> list[str]:
        items = self._live(key)
        if not items:
            return []
        return _list_range(items, start, end)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        if self._live(key) is not None:
            self._expires_at[key] = self._clock() + ttl_seconds

    async def delete(self, key: str) -> None:
        self._lists.pop(key, None)
        self._expires_at.pop(key, None)

    async def scan(self, pattern: str, limit: int | None = None) -> list[str]:
        keys = []
        for key in list(self._lists):
            if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern):
                keys.append(key)
                if limit is not None and len(keys) >= limit:
                    break
        return keys

    async def close(self) -> None:
        self._lists.clear()
        self._expires_at.clear()


class RedisSessionBackend:
    """Redis list backend (RPUSH / LRANGE / EXPIRE / DEL / SCAN)."""

    name = "redis"

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        if client is None:
            if not url:
                raise ValueError("RedisSessionBackend needs a url or a client")
            client = redis.Redis.from_url(url, decode_responses=True)
        self._client = client

    async def append(self, key: str, value: str) -> int:
        return await self._client.rpush(key, value)

    async def range(self, key: str, start: int, end: int) -> list[str]:
        return await self._client.lrange(key, start, end)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._client.expire(key, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def scan(self, pattern: str, limit: int | None = None) -> list[str]:
        keys = []
        async for key in self._client.scan_iter(match=pattern, count=100):
            keys.append(key)
            if limit is not None and len(keys) >= limit:
                break
        return keys

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis session backend closed")
