import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Simultaneous profile lookups allowed per cache instance
DEFAULT_MAX_CONCURRENCY = 5


class UserInfoCache(Generic[T]):
    """
    Memoizes profile lookups keyed by provider user ID.

    Concurrent callers asking for the same ID share one in-flight lookup, and
    at most ``max_concurrency`` lookups run at once. Successful results stay
    cached for the lifetime of the instance; failures resolve to None and are
    retried on the next call.
    """

    def __init__(
        self,
        lookup: Callable[[str], Awaitable[Optional[T]]],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        name: str = "user",
    ):
        self._lookup = lookup
        self._gate = asyncio.Semaphore(max_concurrency)
        self._cache: Dict[str, T] = {}
        self._pending: Dict[str, "asyncio.Future[Optional[T]]"] = {}
        self.name = name

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    async def resolve(self, key: str) -> Optional[T]:
        if key in self._cache:
            return self._cache[key]

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._gated_lookup(key))
            self._pending[key] = pending

        # One caller being cancelled must not cancel the shared lookup
        return await asyncio.shield(pending)

    async def _gated_lookup(self, key: str) -> Optional[T]:
        async with self._gate:
            try:
                info = await self._lookup(key)
                if info is not None:
                    self._cache[key] = info
                return info
            except Exception as e:
                logger.warning(f"Failed to fetch {self.name} info for {key}: {e}")
                return None
            finally:
                self._pending.pop(key, None)
