"""Key/value stores holding in-progress conversations.

Values are opaque strings; expiry belongs to the store. A key that has lapsed
reads back exactly like a key that was never written.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Optional, Protocol

from redis.asyncio import Redis

# KEYS[1] = session key; ARGV = expected value ('' when absent), new value, ttl seconds
_REPLACE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current == false then
  current = ''
end
if current ~= ARGV[1] then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
return 1
"""


class SessionStore(Protocol):
    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> None: ...

    async def replace(self, key: str, expected: Optional[str], value: str, ttl_seconds: int) -> bool:
        """Write ``value`` only if the key still holds ``expected`` (None means absent)."""
        ...


class InMemorySessionStore:
    """Process-local store for single-worker deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._items[key] = (value, self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def replace(self, key: str, expected: Optional[str], value: str, ttl_seconds: int) -> bool:
        if self._live(key) != expected:
            return False
        self._items[key] = (value, self._clock() + ttl_seconds)
        return True


class RedisSessionStore:
    def __init__(self, client: Redis) -> None:
        self.client = client
        self._replace = client.register_script(_REPLACE_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def replace(self, key: str, expected: Optional[str], value: str, ttl_seconds: int) -> bool:
        result = await self._replace(keys=[key], args=[expected or "", value, ttl_seconds])
        return int(result) == 1

    async def aclose(self) -> None:
        await self.client.aclose()
