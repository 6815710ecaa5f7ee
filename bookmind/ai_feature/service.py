"""AI query assistant orchestration.

Flow:
1. Rate limit the caller (fails open when the cache is unavailable)
2. Look the question up in the answer cache
3. On miss, ask the model to interpret the question
4. Parse and validate the intent
5. Run the matching analytic query
6. Ask the model to explain the rows
7. Return the answer, cache write happens in the background
"""
import json
import logging
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookmind.ai_feature.cache_gate import QueryCacheGate
from bookmind.ai_feature.dispatcher import QueryDispatcher
from bookmind.ai_feature.intent import parse_intent
from bookmind.ai_feature.llm import LanguageModel, get_language_model
from bookmind.ai_feature.rate_limit import RateLimiter
from bookmind.core.book_store import BookStore, UserDirectory
from bookmind.core.cache import BoundedCache, get_cache
from bookmind.core.config import settings
from bookmind.core.database import get_db
from bookmind.core.exceptions import QueryError, RateLimitExceeded
from bookmind.core.schemas import AiQueryResponse

GENERIC_FAILURE_ANSWER = "An error occurred while processing your request."
GENERIC_FAILURE_MESSAGE = "AI processing error"


def build_context(principal_id, is_privileged: bool) -> str:
    if is_privileged:
        return "User is an admin and can query all books."
    return f"User can only query their own books (UserId: {principal_id})."


class AiQueryService:
    def __init__(
        self,
        limiter: RateLimiter,
        gate: QueryCacheGate,
        model: LanguageModel,
        dispatcher: QueryDispatcher,
    ):
        self.limiter = limiter
        self.gate = gate
        self.model = model
        self.dispatcher = dispatcher

    async def ask(self, question: str, principal_id: int, is_privileged: bool) -> AiQueryResponse:
        """
        Answer a free-form question about the book collection.

        Admission is checked before the cache lookup, so a cached answer still
        uses one unit of the caller's quota.

        Raises:
            RateLimitExceeded: caller used up the budget for this window
            QueryValidationError: model reply or query type could not be understood
            QueryPermissionError: admin-only query asked by a regular user
        """
        if not await self.limiter.admit(principal_id):
            raise RateLimitExceeded()

        try:
            return await self.gate.execute(
                question,
                principal_id,
                is_privileged,
                lambda: self._answer(question, principal_id, is_privileged),
            )
        except QueryError:
            raise
        except Exception:
            logging.exception(f"AI query failed for user {principal_id}")
            return AiQueryResponse(
                success=False,
                answer=GENERIC_FAILURE_ANSWER,
                error_message=GENERIC_FAILURE_MESSAGE,
            )

    async def _answer(self, question: str, principal_id: int, is_privileged: bool) -> AiQueryResponse:
        raw = await self.model.interpret(question, build_context(principal_id, is_privileged))
        intent = parse_intent(raw)
        result = await self.dispatcher.dispatch(intent, principal_id, is_privileged)

        answer = await self.model.explain(question, json.dumps(result.rows))
        return AiQueryResponse(
            success=True,
            answer=answer,
            interpreted_query=intent.query_type.strip().upper(),
            data=result.rows,
            chart_type=result.chart_hint,
        )


async def get_ai_query_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[BoundedCache, Depends(get_cache)],
    model: Annotated[LanguageModel, Depends(get_language_model)],
) -> AiQueryService:
    return AiQueryService(
        limiter=RateLimiter(
            cache,
            max_calls=settings.AI_RATE_LIMIT_MAX_CALLS,
            window_seconds=settings.AI_RATE_LIMIT_WINDOW_SECONDS,
        ),
        gate=QueryCacheGate(
            cache,
            fast_ttl_seconds=settings.AI_CACHE_TTL_FAST_SECONDS,
            normal_ttl_seconds=settings.AI_CACHE_TTL_NORMAL_SECONDS,
        ),
        model=model,
        dispatcher=QueryDispatcher(BookStore(db), UserDirectory(db)),
    )
