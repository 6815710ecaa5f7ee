import hashlib
import logging
from typing import Awaitable, Callable, Iterable, Optional

from bookmind.ai_feature.intent import QueryType
from bookmind.core import background
from bookmind.core.cache import BoundedCache
from bookmind.core.schemas import AiQueryResponse

CACHE_PREFIX = "aiquery"
ADMIN_SCOPE = "admin"

# Answers built on data that changes with every reading-status update
FAST_CHANGING_TYPES = (QueryType.USER_STATISTICS, QueryType.CURRENTLY_READING)


def normalize_question(question: str) -> str:
    return " ".join((question or "").strip().lower().split())


def fingerprint(question: str) -> str:
    return hashlib.sha256(normalize_question(question).encode("utf-8")).hexdigest()


def cache_scope(principal_id, is_privileged: bool) -> str:
    # Admin answers may contain anybody's books, so they live under one
    # shared prefix that every mutation evicts
    if is_privileged:
        return f"{ADMIN_SCOPE}:{principal_id}"
    return str(principal_id)


def cache_key(question: str, principal_id, is_privileged: bool = False) -> str:
    return f"{CACHE_PREFIX}:{cache_scope(principal_id, is_privileged)}:{fingerprint(question)}"


class QueryCacheGate:
    """
    Cache-aside wrapper around the expensive model + dispatch pipeline.

    Hits return straight away. Misses run the pipeline and the successful answer
    is written back in a detached task, so the caller never waits on the cache.
    """

    def __init__(
        self,
        cache: BoundedCache,
        fast_ttl_seconds: int = 30,
        normal_ttl_seconds: int = 180,
        fast_types: Iterable[QueryType] = FAST_CHANGING_TYPES,
    ):
        self.cache = cache
        self.fast_ttl_seconds = fast_ttl_seconds
        self.normal_ttl_seconds = normal_ttl_seconds
        self.fast_types = {t.value for t in fast_types}

    def ttl_for(self, query_type: Optional[str]) -> int:
        if query_type and query_type.upper() in self.fast_types:
            return self.fast_ttl_seconds
        return self.normal_ttl_seconds

    async def execute(
        self,
        question: str,
        principal_id,
        is_privileged: bool,
        compute: Callable[[], Awaitable[AiQueryResponse]],
    ) -> AiQueryResponse:
        key = cache_key(question, principal_id, is_privileged)

        cached = await self.cache.get(key, AiQueryResponse)
        if cached is not None:
            logging.info(f"Cache hit for AI query of user {principal_id}")
            return cached

        response = await compute()
        if response.success:
            ttl = self.ttl_for(response.interpreted_query)
            background.spawn(self.cache.set(key, response, ttl), name=f"cache-write:{key}")
        return response
