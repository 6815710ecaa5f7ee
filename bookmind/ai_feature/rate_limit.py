import logging

from bookmind.core.cache import BoundedCache


class RateLimiter:
    """
    Soft per-user budget for AI queries.

    Counts calls in a window that starts with the first call and resets when the
    counter key expires. If the cache cannot answer in time the call is admitted.
    """

    def __init__(self, cache: BoundedCache, max_calls: int = 4, window_seconds: int = 60):
        self.cache = cache
        self.max_calls = max_calls
        self.window_seconds = window_seconds

    @staticmethod
    def key_for(principal_id) -> str:
        return f"rate:{principal_id}"

    async def admit(self, principal_id) -> bool:
        count = await self.cache.increment(self.key_for(principal_id), self.window_seconds)
        if count is None:
            logging.warning(f"Rate limit check unavailable for user {principal_id}, allowing request")
            return True
        if count > self.max_calls:
            logging.info(f"Rate limit hit for user {principal_id} ({count}/{self.max_calls})")
            return False
        return True
