import logging
from typing import Annotated

from fastapi import Depends

from bookmind.ai_feature.cache_gate import ADMIN_SCOPE, CACHE_PREFIX
from bookmind.core import background
from bookmind.core.cache import BoundedCache, get_cache


class InvalidationBroadcaster:
    """Evicts cached AI answers that a book mutation may have made stale."""

    def __init__(self, cache: BoundedCache):
        self.cache = cache

    @staticmethod
    def patterns_for(principal_id) -> list:
        return [
            f"{CACHE_PREFIX}:{principal_id}:*",
            f"{CACHE_PREFIX}:{ADMIN_SCOPE}:*",
        ]

    def invalidate(self, principal_id) -> None:
        """Fire-and-forget, the mutation never waits for the eviction."""
        background.spawn(self._evict(principal_id), name=f"cache-invalidate:{principal_id}")

    async def _evict(self, principal_id) -> None:
        removed = 0
        for pattern in self.patterns_for(principal_id):
            removed += await self.cache.remove_by_pattern(pattern)
        logging.info(f"Invalidated {removed} cached AI answer(s) after change by user {principal_id}")


def get_invalidator(
    cache: Annotated[BoundedCache, Depends(get_cache)],
) -> InvalidationBroadcaster:
    return InvalidationBroadcaster(cache)
