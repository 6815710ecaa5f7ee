import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from bookmind.ai_feature.intent import QueryType
from bookmind.core.book_store import BookStore, UserDirectory
from bookmind.core.exceptions import QueryPermissionError, QueryValidationError
from bookmind.core.schemas import (
    ACTIVE_STATUSES,
    ChartHint,
    QueryIntent,
    QueryParameters,
    QueryResult,
    ReadingStatus,
    Row,
)

# -----------------------------------------------------------------------------
# QUERY DISPATCHER
# Purpose: run one of the ten supported analytic queries for a parsed intent.
# Handlers only read from the store and always return flat rows + a chart hint.
# -----------------------------------------------------------------------------

DEFAULT_EXPENSIVE_LIMIT = 5
TOP_N = 10


def _status_name(value: Any) -> str:
    status = ReadingStatus.parse(value)
    return status.value if status else str(value)


def _price(value: Any) -> float:
    return float(value or 0)


def _most_common(values: Iterable[Any]) -> Optional[Any]:
    """Most frequent value, ties go to the one seen first."""
    counts = Counter(values)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def _count_desc(groups: Dict[Any, int]) -> List[tuple]:
    # sorted() is stable, equal counts keep first-seen order
    return sorted(groups.items(), key=lambda item: item[1], reverse=True)


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0


def _metric(name: str, value: Any) -> Row:
    return {"metric": name, "value": value}


class QueryDispatcher:
    def __init__(self, store: BookStore, users: UserDirectory):
        self.store = store
        self.users = users
        self._handlers: Dict[
            QueryType, Callable[[QueryParameters, int, bool], Awaitable[QueryResult]]
        ] = {
            QueryType.USER_WITH_MOST_BOOKS: self.user_with_most_books,
            QueryType.MOST_POPULAR_BOOK: self.most_popular_book,
            QueryType.EXPENSIVE_BOOKS: self.expensive_books,
            QueryType.BOOKS_BY_GENRE: self.books_by_genre,
            QueryType.BOOKS_BY_STATUS: self.books_by_status,
            QueryType.USER_STATISTICS: self.user_statistics,
            QueryType.MY_BOOK_COUNT: self.my_book_count,
            QueryType.CURRENTLY_READING: self.currently_reading,
            QueryType.COMMON_GENRE: self.common_genre,
            QueryType.GENERAL_STATISTICS: self.general_statistics,
        }

    async def dispatch(
        self, intent: QueryIntent, principal_id: int, is_privileged: bool
    ) -> QueryResult:
        try:
            query_type = QueryType(intent.query_type.strip().upper())
        except ValueError:
            logging.warning(f"Unsupported query type from model: {intent.query_type!r}")
            raise QueryValidationError("Query type not supported")

        handler = self._handlers[query_type]
        return await handler(intent.parameters, principal_id, is_privileged)

    async def _scoped_books(self, principal_id: int, is_privileged: bool):
        if is_privileged:
            return await self.store.all_for_admin()
        return await self.store.by_owner(principal_id)

    # ---- admin-only aggregates ----

    async def user_with_most_books(self, params, principal_id, is_privileged):
        if not is_privileged:
            raise QueryPermissionError("Only admins can see all users' book counts")

        books = await self.store.all_for_admin()
        per_owner: Dict[int, int] = {}
        for book in books:
            per_owner[book.owner_id] = per_owner.get(book.owner_id, 0) + 1

        top = _count_desc(per_owner)[:TOP_N]
        names = await self.users.get_user_names([owner_id for owner_id, _ in top])
        rows = [
            {"userName": names.get(owner_id) or "Unknown", "bookCount": count}
            for owner_id, count in top
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.BAR)

    async def most_popular_book(self, params, principal_id, is_privileged):
        if not is_privileged:
            raise QueryPermissionError(
                "Only admins can see most popular books across all users"
            )

        books = await self.store.all_for_admin()
        owned_by: Dict[tuple, int] = {}
        for book in books:
            key = (book.title, book.author)
            active = ReadingStatus.parse(book.reading_status) in ACTIVE_STATUSES
            owned_by[key] = owned_by.get(key, 0) + (1 if active else 0)

        rows = [
            {"title": title, "author": author, "ownedBy": count}
            for (title, author), count in _count_desc(owned_by)[:TOP_N]
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.BAR)

    async def general_statistics(self, params, principal_id, is_privileged):
        if not is_privileged:
            raise QueryPermissionError("Only admins can see general statistics")

        books = await self.store.all_for_admin()
        prices = [_price(b.price) for b in books]
        owners = {b.owner_id for b in books}

        rows = [
            _metric("Total Books", len(books)),
            _metric("Total Users with Books", len(owners)),
            _metric(
                "Average Books per User",
                round(len(books) / len(owners), 2) if owners else 0,
            ),
            _metric("Most Expensive Book", max(prices) if prices else 0),
            _metric("Average Book Price", _average(prices)),
            _metric("Most Popular Genre", _most_common(b.genre for b in books) or "N/A"),
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.TABLE)

    # ---- scoped listings ----

    async def expensive_books(self, params, principal_id, is_privileged):
        limit = params.limit if params.limit is not None else DEFAULT_EXPENSIVE_LIMIT
        books = await self._scoped_books(principal_id, is_privileged)
        ranked = sorted(books, key=lambda b: _price(b.price), reverse=True)

        rows = [
            {
                "id": b.id,
                "title": b.title,
                "author": b.author,
                "price": _price(b.price),
                "genre": b.genre,
            }
            for b in ranked[: max(limit, 0)]
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.TABLE)

    async def books_by_genre(self, params, principal_id, is_privileged):
        genre = (params.genre or "").lower()
        books = await self._scoped_books(principal_id, is_privileged)

        rows = [
            {
                "title": b.title,
                "author": b.author,
                "genre": b.genre,
                "price": _price(b.price),
                "status": _status_name(b.reading_status),
            }
            for b in books
            if genre in (b.genre or "").lower()
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.TABLE)

    async def books_by_status(self, params, principal_id, is_privileged):
        status = ReadingStatus.parse(params.status)
        if status is None:
            raise QueryValidationError(f"Invalid reading status: {params.status}")

        if is_privileged:
            books = [
                b
                for b in await self.store.all_for_admin()
                if ReadingStatus.parse(b.reading_status) == status
            ]
        else:
            books = await self.store.by_owner_and_status(principal_id, status)

        return QueryResult(rows=self._status_rows(books), chart_hint=ChartHint.TABLE)

    async def currently_reading(self, params, principal_id, is_privileged):
        # Admins get the library's *completed* books here, kept as-is until
        # product confirms what the admin view should show
        if is_privileged:
            books = [
                b
                for b in await self.store.all_for_admin()
                if ReadingStatus.parse(b.reading_status) == ReadingStatus.COMPLETED
            ]
        else:
            books = await self.store.by_owner_and_status(
                principal_id, ReadingStatus.READING
            )

        return QueryResult(rows=self._status_rows(books), chart_hint=ChartHint.TABLE)

    @staticmethod
    def _status_rows(books) -> List[Row]:
        return [
            {
                "title": b.title,
                "author": b.author,
                "genre": b.genre,
                "status": _status_name(b.reading_status),
            }
            for b in books
        ]

    # ---- personal summaries ----

    async def user_statistics(self, params, principal_id, is_privileged):
        books = await self.store.by_owner(principal_id)
        if not books:
            return QueryResult(rows=[], chart_hint=ChartHint.TABLE)

        statuses = [ReadingStatus.parse(b.reading_status) for b in books]
        rows = [
            _metric("Total Books", len(books)),
            _metric("Books Reading", statuses.count(ReadingStatus.READING)),
            _metric("Books Completed", statuses.count(ReadingStatus.COMPLETED)),
            _metric("Books Not Started", statuses.count(ReadingStatus.NOT_STARTED)),
            _metric("Average Book Price", _average([_price(b.price) for b in books])),
            _metric("Most Common Genre", _most_common(b.genre for b in books) or "N/A"),
        ]
        return QueryResult(rows=rows, chart_hint=ChartHint.TABLE)

    async def my_book_count(self, params, principal_id, is_privileged):
        count = await self.store.count_by_owner(principal_id)
        return QueryResult(
            rows=[_metric("Total Books", count)], chart_hint=ChartHint.SINGLE
        )

    async def common_genre(self, params, principal_id, is_privileged):
        books = await self._scoped_books(principal_id, is_privileged)
        if not books:
            return QueryResult(rows=[], chart_hint=ChartHint.SINGLE)

        genre = _most_common(b.genre for b in books)
        return QueryResult(
            rows=[_metric("Most Common Genre", genre)], chart_hint=ChartHint.SINGLE
        )
