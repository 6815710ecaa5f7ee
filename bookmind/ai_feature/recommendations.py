import json
import logging
from collections import Counter
from typing import Annotated, List, Set

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from bookmind.ai_feature.intent import lower_keys, strip_code_fences
from bookmind.ai_feature.llm import LanguageModel, get_language_model
from bookmind.core import models
from bookmind.core.book_store import BookStore
from bookmind.core.cache import BoundedCache, get_cache
from bookmind.core.database import get_db
from bookmind.core.schemas import (
    BookRecommendation,
    ReadingStatus,
    RecommendationAction,
    RecommendationResponse,
    SaveRecommendationRequest,
)

DISMISSED_PREFIX = "dismissed_recommendations"
DISMISS_TTL_SECONDS = 30 * 60
COMPLETED_TITLES_IN_PROMPT = 10

# Shown to readers with an empty collection
POPULAR_BOOKS = [
    BookRecommendation(
        title="1984",
        author="George Orwell",
        genre="Dystopian",
        estimated_price=15.99,
        reason="A universally acclaimed classic.",
    ),
    BookRecommendation(
        title="The Hobbit",
        author="J.R.R. Tolkien",
        genre="Fantasy",
        estimated_price=19.99,
        reason="A timeless fantasy adventure.",
    ),
    BookRecommendation(
        title="To Kill a Mockingbird",
        author="Harper Lee",
        genre="Classic",
        estimated_price=14.99,
        reason="A beloved literary masterpiece.",
    ),
    BookRecommendation(
        title="Dune",
        author="Frank Herbert",
        genre="Science Fiction",
        estimated_price=18.99,
        reason="One of the most influential sci-fi novels ever written.",
    ),
]


def build_prompt(books: List[models.Book], dismissed: Set[str], count: int) -> str:
    genres = Counter(b.genre for b in books)
    completed = [
        b.title
        for b in books
        if ReadingStatus.parse(b.reading_status) == ReadingStatus.COMPLETED
    ][:COMPLETED_TITLES_IN_PROMPT]

    return f"""User reading history analysis:
- Genres owned: {", ".join(f"{genre}: {n} books" for genre, n in genres.items())}
- Completed books: {", ".join(completed)}
- Owned books: {", ".join(b.title for b in books)}

Recommend {count} books the user has NOT read.
Mix genres proportionally based on the user's reading habits.
Do NOT repeat any owned books or these dismissed books:
{", ".join(sorted(dismissed))}

Return ONLY valid JSON in this format:
{{"recommendations": [{{"title": "", "author": "", "genre": "", "estimatedPrice": 0, "reason": ""}}]}}"""


def parse_recommendations(raw_text: str) -> List[BookRecommendation]:
    """Read the model's JSON reply. Anything unreadable yields no recommendations."""
    try:
        payload = lower_keys(json.loads(strip_code_fences(raw_text)))
        items = payload.get("recommendations") or []
    except (ValueError, AttributeError) as error:
        logging.error(f"Failed to parse recommendations {raw_text!r}: {error}")
        return []

    recommendations = []
    for item in items:
        if not isinstance(item, dict):
            continue
        fields = lower_keys(item)
        try:
            recommendations.append(
                BookRecommendation(
                    title=fields.get("title") or "",
                    author=fields.get("author") or "",
                    genre=fields.get("genre") or "",
                    estimated_price=fields.get("estimatedprice"),
                    reason=fields.get("reason") or "",
                )
            )
        except ValidationError as error:
            logging.warning(f"Skipping malformed recommendation {item!r}: {error}")
    return recommendations


class RecommendationService:
    def __init__(self, store: BookStore, cache: BoundedCache, model: LanguageModel):
        self.store = store
        self.cache = cache
        self.model = model

    @staticmethod
    def dismissed_key(user_id) -> str:
        return f"{DISMISSED_PREFIX}:{user_id}"

    async def dismissed_titles(self, user_id) -> Set[str]:
        titles = await self.cache.get(self.dismissed_key(user_id))
        return set(titles) if isinstance(titles, list) else set()

    async def recommend(self, user_id: int, count: int) -> RecommendationResponse:
        try:
            books = await self.store.by_owner(user_id)
            if not books:
                return RecommendationResponse(
                    success=True,
                    message="You don't have any books yet. Here are some popular recommendations:",
                    recommendations=POPULAR_BOOKS[:count],
                    recommendation_type="Popular",
                )

            dismissed = await self.dismissed_titles(user_id)
            raw = await self.model.recommend(build_prompt(books, dismissed, count))
            recommendations = [
                r for r in parse_recommendations(raw) if r.title not in dismissed
            ][:count]

            return RecommendationResponse(
                success=True,
                message="Here are personalized recommendations based on your reading history:",
                recommendations=recommendations,
                recommendation_type="AI-Generated",
            )
        except Exception:
            logging.exception(f"Failed to generate recommendations for user {user_id}")
            return RecommendationResponse(
                success=False, message="Unable to generate recommendations at this time."
            )

    async def save(self, user_id: int, request: SaveRecommendationRequest) -> models.Book:
        book = models.Book(
            title=request.title,
            author=request.author,
            genre=request.genre,
            price=request.estimated_price,
            reading_status=ReadingStatus.NOT_STARTED.value,
            owner_id=user_id,
        )
        return await self.store.save(book)

    async def dismiss(self, user_id: int, title: str) -> RecommendationAction:
        """Hide a title from this user's recommendations for the next 30 minutes."""
        dismissed = await self.dismissed_titles(user_id)
        dismissed.add(title)
        await self.cache.set(
            self.dismissed_key(user_id), sorted(dismissed), ttl=DISMISS_TTL_SECONDS
        )
        return RecommendationAction(success=True, message="Book dismissed")


def get_recommendation_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[BoundedCache, Depends(get_cache)],
    model: Annotated[LanguageModel, Depends(get_language_model)],
) -> RecommendationService:
    return RecommendationService(BookStore(db), cache, model)
