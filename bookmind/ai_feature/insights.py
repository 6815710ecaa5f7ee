import logging
from collections import Counter
from typing import Annotated, List, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookmind.ai_feature.llm import LanguageModel, get_language_model
from bookmind.core import models
from bookmind.core.book_store import BookStore, UserDirectory
from bookmind.core.database import get_db
from bookmind.core.schemas import (
    InsightItem,
    LibraryInsights,
    LibraryStatistics,
    ReadingHabits,
    ReadingStatus,
)
from bookmind.core.security import is_admin

# -----------------------------------------------------------------------------
# LIBRARY INSIGHTS
# Purpose: reading statistics for the whole library or one reader, a few
# rule-based observations, and a short model-written summary on top.
# Admin accounts never count as readers.
# -----------------------------------------------------------------------------

ADMIN_EXCLUDED_SUMMARY = "Admin users are excluded from reading insights."
SUMMARY_UNAVAILABLE = "AI insights are currently unavailable."
HABITS_FALLBACK_SUMMARY = "User shows consistent reading activity."

STRONG_COMPLETION_RATE = 70
LOW_COMPLETION_RATE = 40
TOP_GENRES = 3


def _status(book: models.Book) -> Optional[ReadingStatus]:
    return ReadingStatus.parse(book.reading_status)


def _genre(book: models.Book) -> str:
    return (book.genre or "").strip() or "Unknown"


def _completion_rate(completed: int, total: int) -> float:
    return completed / total * 100 if total else 0


def calculate_statistics(
    books: List[models.Book], readers: List[models.User], user_scoped: bool
) -> LibraryStatistics:
    genres = Counter(_genre(b) for b in books)
    statuses = Counter(_status(b).value for b in books if _status(b) is not None)

    most_active_user = None
    if not user_scoped and books:
        owner_id, _ = Counter(b.owner_id for b in books).most_common(1)[0]
        owner = next((u for u in readers if u.id == owner_id), None)
        most_active_user = (owner.username or owner.email) if owner else None

    return LibraryStatistics(
        total_books=len(books),
        total_users=None if user_scoped else len(readers),
        most_popular_genre=genres.most_common(1)[0][0] if genres else "N/A",
        most_active_user=most_active_user,
        completed_books_count=statuses.get(ReadingStatus.COMPLETED.value, 0),
        in_progress_books_count=statuses.get(ReadingStatus.READING.value, 0),
        genre_distribution=dict(genres),
        status_distribution=dict(statuses),
    )


def generate_insights(stats: LibraryStatistics) -> List[InsightItem]:
    """Rule-based observations, nothing for an empty collection."""
    if stats.total_books == 0:
        return []

    insights = [
        InsightItem(
            type="GENRE",
            title="Most Read Genre",
            description=f"{stats.most_popular_genre} is the most read genre.",
        )
    ]

    rate = _completion_rate(stats.completed_books_count, stats.total_books)
    if rate >= STRONG_COMPLETION_RATE:
        insights.append(
            InsightItem(
                type="COMPLETION",
                title="Strong Completion Habit",
                description="The reader finishes most of the books they start.",
            )
        )
    elif rate < LOW_COMPLETION_RATE:
        insights.append(
            InsightItem(
                type="COMPLETION",
                title="Low Completion Rate",
                description="Many books are started but not completed.",
            )
        )

    if stats.in_progress_books_count > 1:
        insights.append(
            InsightItem(
                type="COMPLETION",
                title="Multi-Book Reader",
                description="Multiple books are being read at the same time.",
            )
        )
    elif stats.in_progress_books_count == 1:
        insights.append(
            InsightItem(
                type="COMPLETION",
                title="Focused Reader",
                description="The reader usually focuses on one book at a time.",
            )
        )
    return insights


def describe_characteristics(
    total: int, completed: int, in_progress: int, preferred_genres: List[str]
) -> List[str]:
    if total == 0:
        return []

    traits = []
    rate = _completion_rate(completed, total)
    if rate >= STRONG_COMPLETION_RATE:
        traits.append("Consistent reader")
    elif rate < LOW_COMPLETION_RATE:
        traits.append("Starts more books than finishes")

    if in_progress == 1:
        traits.append("Focused reader")
    elif in_progress > 1:
        traits.append("Reads multiple books at once")

    if len(preferred_genres) == 1:
        traits.append("Genre-loyal reader")
    elif len(preferred_genres) >= TOP_GENRES:
        traits.append("Explores multiple genres")
    return traits


def _overview(stats: LibraryStatistics, user_scoped: bool) -> str:
    lines = [
        "User Library Overview" if user_scoped else "Complete Library Overview",
        f"Total Books: {stats.total_books}",
        f"Completed: {stats.completed_books_count}",
        f"In Progress: {stats.in_progress_books_count}",
        f"Most Popular Genre: {stats.most_popular_genre}",
    ]
    if not user_scoped:
        lines.append(f"Total Users: {stats.total_users}")
        lines.append(f"Most Active User: {stats.most_active_user}")
    return "\n".join(lines)


class LibraryInsightsService:
    def __init__(self, store: BookStore, users: UserDirectory, model: LanguageModel):
        self.store = store
        self.users = users
        self.model = model

    async def library_insights(self, scoped_user_id: Optional[int] = None) -> LibraryInsights:
        """
        Insights for one reader, or for the whole library when no user is given.

        Only books owned by non-admin accounts are counted. A failing model
        call never fails the report, the summary falls back to a fixed text.
        """
        user_scoped = scoped_user_id is not None
        if user_scoped:
            scoped_user = await self.users.get_user(scoped_user_id)
            if scoped_user is not None and is_admin(scoped_user):
                return LibraryInsights(summary=ADMIN_EXCLUDED_SUMMARY)
            books = await self.store.by_owner(scoped_user_id)
        else:
            books = await self.store.all_for_admin()

        readers = [u for u in await self.users.all_users() if not is_admin(u)]
        reader_ids = {u.id for u in readers}
        books = [b for b in books if b.owner_id in reader_ids]

        stats = calculate_statistics(books, readers, user_scoped)
        question = (
            "Summarize this user's reading habits"
            if user_scoped
            else "Summarize insights for the entire library"
        )
        try:
            summary = await self.model.explain(question, _overview(stats, user_scoped))
        except Exception as error:
            logging.warning(f"Insight summary generation failed: {error}")
            summary = SUMMARY_UNAVAILABLE

        return LibraryInsights(
            summary=summary, insights=generate_insights(stats), statistics=stats
        )

    async def reading_habits(self, user_id: int) -> ReadingHabits:
        """
        Raises:
            LookupError: no such user
            ValueError: the user is an admin, admins have no reading habits
        """
        user = await self.users.get_user(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        if is_admin(user):
            raise ValueError("Admin users do not have reading habits.")

        books = await self.store.by_owner(user_id)
        statuses = [_status(b) for b in books]
        completed = statuses.count(ReadingStatus.COMPLETED)
        in_progress = statuses.count(ReadingStatus.READING)
        genres = Counter(b.genre for b in books if b.genre)
        preferred = [genre for genre, _ in genres.most_common(TOP_GENRES)]
        name = user.username or user.email

        context = "\n".join(
            [
                f"User: {name}",
                f"Total Books: {len(books)}",
                f"Completed: {completed}",
                f"In Progress: {in_progress}",
                f"Top Genres: {', '.join(preferred)}",
            ]
        )
        try:
            summary = await self.model.explain("Summarize this user's reading habits", context)
        except Exception as error:
            logging.warning(f"Reading habits summary failed for user {user_id}: {error}")
            summary = HABITS_FALLBACK_SUMMARY

        return ReadingHabits(
            user_id=user_id,
            user_name=name,
            summary=summary,
            preferred_genres=preferred,
            total_books=len(books),
            completed_books=completed,
            books_in_progress=in_progress,
            characteristics=describe_characteristics(
                len(books), completed, in_progress, preferred
            ),
        )


def get_insights_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    model: Annotated[LanguageModel, Depends(get_language_model)],
) -> LibraryInsightsService:
    return LibraryInsightsService(BookStore(db), UserDirectory(db), model)
