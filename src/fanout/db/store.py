"""Key-value storage for connections and subscriptions.

Learn: The registry and the index only ever talk to KeyValueStore — get,
set, delete, and a snapshot of the keys. Two backends ship:

- MemoryStore — a dict; the default for single-process deployments.
- RedisStore — redis.asyncio with pydantic-serialized values, so several
  API/dispatcher processes can share one index.

Neither backend locks. Read-modify-write sequences rely on the backend's
own at-most-one-writer semantics (trivially true for one event loop).
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

import redis.asyncio as aioredis
from pydantic import TypeAdapter

T = TypeVar("T")


class KeyValueStore(ABC, Generic[T]):
    """Async key-value storage interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[T]:
        """Return the value under key, or None."""

    @abstractmethod
    async def set(self, key: str, value: T) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """Snapshot of the current keys (safe to mutate the store while looping)."""


class MemoryStore(KeyValueStore[T]):
    """In-process dict-backed store. Values are kept by reference."""

    def __init__(self, initial: Optional[dict[str, T]] = None):
        self._data: dict[str, T] = dict(initial or {})

    async def get(self, key: str) -> Optional[T]:
        return self._data.get(key)

    async def set(self, key: str, value: T) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class RedisStore(KeyValueStore[T]):
    """Redis-backed store. Values are JSON via a pydantic TypeAdapter.

    Learn: Keys are namespaced with a prefix (e.g. "fanout:subscriptions:")
    so the connections and subscriptions maps can share one Redis DB.
    Values come back as fresh objects — references are not preserved
    across processes.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str, value_type: Any):
        self.redis = redis
        self.prefix = prefix
        self._adapter = TypeAdapter(value_type)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[T]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        return self._adapter.validate_json(raw)

    async def set(self, key: str, value: T) -> None:
        await self.redis.set(self._key(key), self._adapter.dump_json(value))

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def keys(self) -> list[str]:
        found = []
        async for raw in self.redis.scan_iter(match=f"{self.prefix}*"):
            key = raw.decode() if isinstance(raw, bytes) else raw
            found.append(key[len(self.prefix):])
        return found
