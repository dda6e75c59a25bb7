"""Key/value, set and sorted-set primitives the queue is built on."""

from __future__ import annotations

import itertools
import time
from typing import Protocol


class Store(Protocol):
    """
    Minimal store contract.

    Sorted sets order members by (score, first insertion); re-adding a
    member updates its score but keeps its insertion position for ties.
    Values are strings (the queue stores JSON).
    """

    async def zadd(self, key: str, member: str, score: float) -> None: ...

    async def zrem(self, key: str, member: str) -> None: ...

    async def zrange(self, key: str) -> list[str]: ...

    async def zcard(self, key: str) -> int: ...

    async def sadd(self, key: str, *members: str) -> None: ...

    async def srem(self, key: str, *members: str) -> None: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def scard(self, key: str) -> int: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: float | None = None) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def close(self) -> None: ...


class MemoryStore:
    """Dict-backed store. Fully in-memory, lost on exit."""

    def __init__(self) -> None:
        self._values: dict[str, tuple[str, float | None]] = {}  # key -> (value, expires_at)
        self._sets: dict[str, set[str]] = {}
        self._zsets: dict[str, dict[str, tuple[float, int]]] = {}  # key -> member -> (score, seq)
        self._seq = itertools.count()

    # --- Sorted sets ---

    async def zadd(self, key: str, member: str, score: float) -> None:
        zset = self._zsets.setdefault(key, {})
        if member in zset:
            zset[member] = (score, zset[member][1])
        else:
            zset[member] = (score, next(self._seq))

    async def zrem(self, key: str, member: str) -> None:
        zset = self._zsets.get(key)
        if zset is not None:
            zset.pop(member, None)

    async def zrange(self, key: str) -> list[str]:
        zset = self._zsets.get(key, {})
        return sorted(zset, key=lambda m: zset[m])

    async def zcard(self, key: str) -> int:
        return len(self._zsets.get(key, {}))

    # --- Sets ---

    async def sadd(self, key: str, *members: str) -> None:
        self._sets.setdefault(key, set()).update(members)

    async def srem(self, key: str, *members: str) -> None:
        members_set = self._sets.get(key)
        if members_set is not None:
            members_set.difference_update(members)

    async def smembers(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))

    async def scard(self, key: str) -> int:
        return len(self._sets.get(key, set()))

    # --- Values ---

    async def get(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            del self._values[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        self._values[key] = (value, expires_at)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._values.pop(key, None)
            self._sets.pop(key, None)
            self._zsets.pop(key, None)

    async def close(self) -> None:
        pass
