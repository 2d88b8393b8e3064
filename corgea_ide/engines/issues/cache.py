"""In-memory TTL cache for async functions with in-flight request coalescing."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

CacheKey = tuple[str, str]


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


def function_identity(fn: Callable[..., Any]) -> str:
    """Stable name for *fn*; bound methods include their instance."""
    name = f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}"
    owner = getattr(fn, "__self__", None)
    if owner is not None:
        name = f"{name}@{id(owner):x}"
    return name


def make_key(fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> CacheKey:
    return function_identity(fn), json.dumps([list(args), kwargs], sort_keys=True, default=repr)


class RequestCache:
    """Shared cache for wrapped async functions.

    * A fresh entry (younger than the wrapper's TTL) is returned directly.
    * Concurrent calls with the same key share one underlying request.
    * Failures are never cached.
    * :meth:`clear` drops everything; requests that were in flight when it
      ran do not write their result into the cleared cache.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._pending: dict[CacheKey, asyncio.Task[Any]] = {}
        self._generation = 0

    def wrap(self, fn: Callable[..., Awaitable[T]], ttl: float) -> CachedFunction[T]:
        return CachedFunction(self, fn, ttl)

    def clear(self) -> None:
        self._generation += 1
        self._entries.clear()
        self._pending.clear()
        log.debug("cache.cleared", generation=self._generation)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _call(
        self,
        fn: Callable[..., Awaitable[T]],
        ttl: float,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> T:
        key = make_key(fn, args, kwargs)

        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp < ttl:
            log.debug("cache.hit", fn=key[0])
            return entry.data

        task = self._pending.get(key)
        if task is None:
            log.debug("cache.miss", fn=key[0])
            task = asyncio.ensure_future(self._fetch(key, fn, args, kwargs, self._generation))
            self._pending[key] = task
        else:
            log.debug("cache.coalesced", fn=key[0])
        # one caller being cancelled must not cancel the shared request
        return await asyncio.shield(task)

    async def _fetch(
        self,
        key: CacheKey,
        fn: Callable[..., Awaitable[T]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        generation: int,
    ) -> T:
        try:
            data = await fn(*args, **kwargs)
            if generation == self._generation:
                self._entries[key] = CacheEntry(data=data, timestamp=self._clock())
            return data
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]


class CachedFunction(Generic[T]):
    """Callable returned by :meth:`RequestCache.wrap`."""

    def __init__(self, cache: RequestCache, fn: Callable[..., Awaitable[T]], ttl: float) -> None:
        self._cache = cache
        self._fn = fn
        self.ttl = ttl
        self.__wrapped__ = fn

    async def __call__(self, *args: Any, **kwargs: Any) -> T:
        return await self._cache._call(self._fn, self.ttl, args, kwargs)

    async def uncached(self, *args: Any, **kwargs: Any) -> T:
        """Call the underlying function, bypassing the cache and coalescing."""
        return await self._fn(*args, **kwargs)

    def __repr__(self) -> str:
        return f"<CachedFunction {function_identity(self._fn)} ttl={self.ttl}>"
