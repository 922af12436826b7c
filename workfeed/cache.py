"""Listing cache for adapters.

Slow-changing upstream listings (the repositories an account participates
in) are kept for a TTL between poll rounds. When a refetch fails, the last
good listing is served instead, so one flaky listing call does not empty a
whole sub-source.
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import LRUCache, TTLCache

logger = logging.getLogger(__name__)

# Returned by lookups that find nothing; None is a valid cached listing
_MISSING = object()

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class AsyncTTLCache:
    """Fresh entries expire after *ttl*; last-good entries outlive them.

    ``fresh`` is a cachetools ``TTLCache``; ``last_good`` is an ``LRUCache``
    of the same size holding every value ever stored, so an expired key can
    still be answered when its refetch fails.
    """

    def __init__(
        self,
        maxsize: int = 32,
        ttl: float = 300.0,
        timer: Callable[[], float] | None = None,
    ) -> None:
        ttl_kwargs = {"timer": timer} if timer is not None else {}
        self.fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, **ttl_kwargs)
        self.last_good: LRUCache = LRUCache(maxsize=maxsize)
        self._fill_locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._fill_locks.setdefault(key, asyncio.Lock())

    def get(self, key: str) -> Any:
        return self.fresh.get(key, _MISSING)

    def get_stale(self, key: str) -> Any:
        return self.last_good.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self.fresh[key] = value
        self.last_good[key] = value

    def invalidate(self, key: str) -> None:
        """Force a refetch on next read; the last-good value is kept."""
        self.fresh.pop(key, None)

    def clear(self) -> None:
        self.fresh.clear()
        self.last_good.clear()
        self._fill_locks.clear()

    @property
    def size(self) -> int:
        return len(self.fresh)


def cached(cache_attr: str, key_func: Callable[..., str]) -> Callable[[F], F]:
    """Cache an async method's result in ``getattr(self, cache_attr)``.

    *key_func* receives the method's arguments, ``self`` included. Concurrent
    callers for one key share a single upstream call. If the call fails and
    a last-good value exists, that value is returned with a warning;
    otherwise the error propagates.
    """

    def decorator(method: F) -> F:
        @functools.wraps(method)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            cache: AsyncTTLCache = getattr(self, cache_attr)
            key = key_func(self, *args, **kwargs)

            hit = cache.get(key)
            if hit is not _MISSING:
                return hit

            async with cache.lock_for(key):
                hit = cache.get(key)
                if hit is not _MISSING:
                    return hit
                try:
                    value = await method(self, *args, **kwargs)
                except Exception as e:
                    stale = cache.get_stale(key)
                    if stale is _MISSING:
                        raise
                    logger.warning(f"Serving last good {key} after {type(e).__name__}: {e}")
                    return stale
                cache.set(key, value)
                return value

        return wrapper  # type: ignore[return-value]

    return decorator
