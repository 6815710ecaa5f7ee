import asyncio
import fnmatch
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple, Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel

from bookmind.core import background
from bookmind.core.config import settings

T = TypeVar("T", bound=BaseModel)


# -----------------------------------------------------------------------------
# CACHE STORES
# Purpose: the raw key/value backends. They may be slow or fail,
# callers never talk to them directly, only through BoundedCache.
# -----------------------------------------------------------------------------
class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def incr(self, key: str, ttl: int) -> int: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    def __init__(self, url: str):
        self.client = redis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self.client.set(key, value, ex=ttl if ttl else None)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        # Batched SCAN + DEL
        removed = 0
        batch = []
        async for key in self.client.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += await self.client.delete(*batch)
                batch.clear()
        if batch:
            removed += await self.client.delete(*batch)
        return removed

    async def incr(self, key: str, ttl: int) -> int:
        # SET NX only succeeds on the first call of a window, so the expiry is
        # attached exactly once and MULTI/EXEC keeps both steps atomic
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=ttl, nx=True)
            pipe.incr(key)
            _, count = await pipe.execute()
        return int(count)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCacheStore:
    """In-process TTL store with LRU eviction, same semantics as the redis store."""

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        # key -> (expires_at or None, value)
        self._store: "OrderedDict[str, Tuple[Optional[float], str]]" = OrderedDict()

    def _live(self, key: str) -> Optional[Tuple[Optional[float], str]]:
        item = self._store.get(key)
        if item is None:
            return None
        expires_at, _ = item
        if expires_at is not None and expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return item

    def _put(self, key: str, value: str, expires_at: Optional[float]) -> None:
        self._store[key] = (expires_at, value)
        self._store.move_to_end(key, last=True)
        while len(self._store) > self.max_entries:
            self._store.popitem(last=False)

    async def get(self, key: str) -> Optional[str]:
        item = self._live(key)
        if item is None:
            return None
        self._store.move_to_end(key, last=True)
        return item[1]

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._put(key, value, expires_at)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            self._store.pop(key, None)
        return len(doomed)

    async def incr(self, key: str, ttl: int) -> int:
        item = self._live(key)
        if item is None:
            expires_at, count = self._clock() + ttl, 0
        else:
            expires_at, count = item[0], int(item[1])
        count += 1
        self._put(key, str(count), expires_at)
        return count

    async def close(self) -> None:
        self._store.clear()


# -----------------------------------------------------------------------------
# BOUNDED CACHE
# Purpose: every store call races a fixed deadline.
# Timeouts and errors degrade to a neutral value (miss / None), never raise.
# The losing store call is not cancelled, it finishes in the background.
# -----------------------------------------------------------------------------
class BoundedCache:
    def __init__(self, store: CacheStore, timeout_seconds: float = 0.5):
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def _race(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[Any]],
        default: Any = None,
    ) -> Any:
        try:
            task = asyncio.ensure_future(call())
        except Exception as error:
            logging.warning(f"Cache {operation} failed for '{key}': {error!r}")
            return default

        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        if task not in done:
            logging.warning(
                f"Cache {operation} timed out after "
                f"{int(self.timeout_seconds * 1000)}ms for '{key}'"
            )
            # Result is discarded, a late failure is only logged
            background.track(task)
            return default

        try:
            return task.result()
        except Exception as error:
            logging.warning(f"Cache {operation} failed for '{key}': {error!r}")
            return default

    async def get(self, key: str, model: Optional[Type[T]] = None) -> Any:
        """Return the cached value, or None on miss, timeout or error."""
        raw = await self._race("read", key, lambda: self.store.get(key))
        if raw is None:
            return None
        try:
            if model is not None:
                return model.model_validate_json(raw)
            return json.loads(raw)
        except ValueError as error:
            logging.warning(f"Cache entry '{key}' could not be decoded: {error}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            if isinstance(value, BaseModel):
                payload = value.model_dump_json(by_alias=True)
            else:
                payload = json.dumps(value)
        except (TypeError, ValueError) as error:
            logging.warning(f"Cache value for '{key}' is not serializable: {error}")
            return
        await self._race("write", key, lambda: self.store.set(key, payload, ttl))

    async def remove(self, key: str) -> None:
        await self._race("delete", key, lambda: self.store.delete(key))

    async def remove_by_pattern(self, pattern: str) -> int:
        removed = await self._race(
            "pattern delete", pattern, lambda: self.store.delete_pattern(pattern)
        )
        return removed or 0

    async def increment(self, key: str, ttl: int) -> Optional[int]:
        """Atomic counter with expiry set on first write. None means 'unknown'."""
        return await self._race("increment", key, lambda: self.store.incr(key, ttl))

    async def close(self) -> None:
        await background.drain(timeout=self.timeout_seconds * 4)
        try:
            await self.store.close()
        except Exception as error:
            logging.warning(f"Cache store did not close cleanly: {error!r}")


def build_cache_store() -> CacheStore:
    if settings.REDIS_URL:
        logging.info("Using redis cache store")
        return RedisCacheStore(settings.REDIS_URL)
    logging.info("REDIS_URL not set, using in-memory cache store")
    return MemoryCacheStore()


_cache: Optional[BoundedCache] = None


# One shared cache per process, handed out as a FastAPI dependency
def get_cache() -> BoundedCache:
    global _cache
    if _cache is None:
        _cache = BoundedCache(
            build_cache_store(),
            timeout_seconds=settings.CACHE_OPERATION_TIMEOUT_MS / 1000,
        )
    return _cache


async def close_cache() -> None:
    global _cache
    if _cache is not None:
        await _cache.close()
        _cache = None
