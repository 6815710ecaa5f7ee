from decimal import Decimal

import pytest

from bookmind.ai_feature.dispatcher import QueryDispatcher
from bookmind.core import models
from bookmind.core.exceptions import QueryPermissionError, QueryValidationError
from bookmind.core.schemas import ChartHint, QueryIntent, ReadingStatus

OWNER = 1
OTHER = 2


class InMemoryBookStore:
    """Store double that keeps books in insertion order and records every call."""

    def __init__(self, books):
        self.books = list(books)
        self.calls = []

    async def by_owner(self, owner_id):
        self.calls.append(("by_owner", owner_id))
        return [b for b in self.books if b.owner_id == owner_id]

    async def by_owner_and_status(self, owner_id, status):
        self.calls.append(("by_owner_and_status", owner_id, status))
        return [
            b for b in self.books if b.owner_id == owner_id and b.reading_status == status.value
        ]

    async def all_for_admin(self):
        self.calls.append(("all_for_admin",))
        return list(self.books)

    async def count_by_owner(self, owner_id):
        self.calls.append(("count_by_owner", owner_id))
        return sum(1 for b in self.books if b.owner_id == owner_id)


class InMemoryUserDirectory:
    def __init__(self, names):
        self.names = names

    async def get_user_names(self, user_ids):
        return {uid: self.names[uid] for uid in user_ids if uid in self.names}


_next_id = iter(range(1, 10_000))


def book(title, genre="Fiction", price="10.00", status="NotStarted", owner=OWNER, author="Author"):
    return models.Book(
        id=next(_next_id),
        title=title,
        author=author,
        genre=genre,
        price=Decimal(price),
        reading_status=status,
        owner_id=owner,
    )


def intent(query_type, **parameters):
    return QueryIntent(query_type=query_type, parameters=parameters)


def make_dispatcher(books, names=None):
    store = InMemoryBookStore(books)
    users = InMemoryUserDirectory(names or {OWNER: "alice", OTHER: "bob"})
    return QueryDispatcher(store, users), store


@pytest.mark.asyncio
async def test_common_genre_scenario():
    dispatcher, _ = make_dispatcher(
        [book("A", "Fiction"), book("B", "Fiction"), book("C", "Fantasy")]
    )

    result = await dispatcher.dispatch(intent("COMMON_GENRE"), OWNER, False)

    assert result.rows == [{"metric": "Most Common Genre", "value": "Fiction"}]
    assert result.chart_hint == ChartHint.SINGLE


@pytest.mark.asyncio
async def test_common_genre_tie_goes_to_first_seen():
    dispatcher, _ = make_dispatcher([book("A", "Poetry"), book("B", "Drama")])

    result = await dispatcher.dispatch(intent("COMMON_GENRE"), OWNER, False)

    assert result.rows[0]["value"] == "Poetry"


@pytest.mark.asyncio
async def test_common_genre_empty_collection():
    dispatcher, _ = make_dispatcher([])

    result = await dispatcher.dispatch(intent("COMMON_GENRE"), OWNER, False)

    assert result.rows == []
    assert result.chart_hint == ChartHint.SINGLE


@pytest.mark.asyncio
async def test_user_statistics_empty_collection_is_not_an_error():
    dispatcher, _ = make_dispatcher([book("Theirs", owner=OTHER)])

    result = await dispatcher.dispatch(intent("USER_STATISTICS"), OWNER, False)

    assert result.rows == []
    assert result.chart_hint == ChartHint.TABLE


@pytest.mark.asyncio
async def test_user_statistics_summary():
    dispatcher, _ = make_dispatcher(
        [
            book("A", "Fiction", "10.00", "Reading"),
            book("B", "Fiction", "20.00", "Completed"),
            book("C", "Fantasy", "5.01", "NotStarted"),
            book("Theirs", "Horror", "99.00", "Reading", owner=OTHER),
        ]
    )

    result = await dispatcher.dispatch(intent("USER_STATISTICS"), OWNER, True)

    assert result.rows == [
        {"metric": "Total Books", "value": 3},
        {"metric": "Books Reading", "value": 1},
        {"metric": "Books Completed", "value": 1},
        {"metric": "Books Not Started", "value": 1},
        {"metric": "Average Book Price", "value": 11.67},
        {"metric": "Most Common Genre", "value": "Fiction"},
    ]


@pytest.mark.asyncio
async def test_user_with_most_books_requires_privilege_and_skips_store():
    dispatcher, store = make_dispatcher([book("A")])

    with pytest.raises(QueryPermissionError):
        await dispatcher.dispatch(intent("USER_WITH_MOST_BOOKS"), OWNER, False)

    assert store.calls == []


@pytest.mark.asyncio
async def test_permission_error_is_a_builtin_permission_error():
    dispatcher, _ = make_dispatcher([])
    with pytest.raises(PermissionError):
        await dispatcher.dispatch(intent("GENERAL_STATISTICS"), OWNER, False)


@pytest.mark.asyncio
async def test_user_with_most_books_ranks_owners():
    dispatcher, _ = make_dispatcher(
        [book("A", owner=OTHER), book("B", owner=OWNER), book("C", owner=OTHER), book("D", owner=3)]
    )

    result = await dispatcher.dispatch(intent("USER_WITH_MOST_BOOKS"), 99, True)

    assert result.rows == [
        {"userName": "bob", "bookCount": 2},
        {"userName": "alice", "bookCount": 1},
        {"userName": "Unknown", "bookCount": 1},
    ]
    assert result.chart_hint == ChartHint.BAR


@pytest.mark.asyncio
async def test_most_popular_book_counts_active_readers_only():
    dispatcher, _ = make_dispatcher(
        [
            book("Dune", status="NotStarted", author="Herbert"),
            book("Dune", status="Reading", author="Herbert", owner=OTHER),
            book("Emma", status="Completed", author="Austen"),
            book("Emma", status="Reading", author="Austen", owner=OTHER),
        ]
    )

    result = await dispatcher.dispatch(intent("MOST_POPULAR_BOOK"), OWNER, True)

    assert result.rows == [
        {"title": "Emma", "author": "Austen", "ownedBy": 2},
        {"title": "Dune", "author": "Herbert", "ownedBy": 1},
    ]

    with pytest.raises(QueryPermissionError):
        await dispatcher.dispatch(intent("MOST_POPULAR_BOOK"), OWNER, False)


@pytest.mark.asyncio
async def test_expensive_books_scoped_and_limited():
    dispatcher, store = make_dispatcher(
        [
            book("Cheap", price="3.00"),
            book("Pricey", price="40.00"),
            book("Mid", price="15.50"),
            book("Theirs", price="500.00", owner=OTHER),
        ]
    )

    result = await dispatcher.dispatch(intent("EXPENSIVE_BOOKS", limit=2), OWNER, False)

    assert [r["title"] for r in result.rows] == ["Pricey", "Mid"]
    assert result.rows[0]["price"] == 40.0
    assert set(result.rows[0]) == {"id", "title", "author", "price", "genre"}
    assert store.calls == [("by_owner", OWNER)]


@pytest.mark.asyncio
async def test_expensive_books_defaults_to_five_and_admin_sees_everything():
    dispatcher, _ = make_dispatcher(
        [book(f"B{i}", price=f"{i}.00", owner=OWNER if i % 2 else OTHER) for i in range(1, 8)]
    )

    result = await dispatcher.dispatch(intent("EXPENSIVE_BOOKS"), OWNER, True)

    assert [r["title"] for r in result.rows] == ["B7", "B6", "B5", "B4", "B3"]


@pytest.mark.asyncio
async def test_books_by_genre_is_case_insensitive_substring():
    dispatcher, _ = make_dispatcher(
        [book("A", "Science Fiction"), book("B", "Fantasy"), book("C", "fiction")]
    )

    result = await dispatcher.dispatch(intent("BOOKS_BY_GENRE", genre="FICTION"), OWNER, False)

    assert [r["title"] for r in result.rows] == ["A", "C"]
    assert result.rows[0]["status"] == "NotStarted"


@pytest.mark.asyncio
async def test_books_by_status_filters_exactly():
    dispatcher, store = make_dispatcher(
        [book("A", status="Reading"), book("B", status="Completed")]
    )

    result = await dispatcher.dispatch(intent("BOOKS_BY_STATUS", status="completed"), OWNER, False)

    assert result.rows == [
        {"title": "B", "author": "Author", "genre": "Fiction", "status": "Completed"}
    ]
    assert store.calls == [("by_owner_and_status", OWNER, ReadingStatus.COMPLETED)]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [None, "", "Skimming", "7", "²"])
async def test_books_by_status_rejects_invalid_status(status):
    dispatcher, _ = make_dispatcher([book("A")])

    with pytest.raises(QueryValidationError):
        await dispatcher.dispatch(intent("BOOKS_BY_STATUS", status=status), OWNER, False)


@pytest.mark.asyncio
async def test_my_book_count():
    dispatcher, _ = make_dispatcher([book("A"), book("B"), book("C", owner=OTHER)])

    result = await dispatcher.dispatch(intent("MY_BOOK_COUNT"), OWNER, True)

    assert result.rows == [{"metric": "Total Books", "value": 2}]
    assert result.chart_hint == ChartHint.SINGLE


@pytest.mark.asyncio
async def test_currently_reading_for_regular_user():
    dispatcher, _ = make_dispatcher(
        [book("A", status="Reading"), book("B", status="Completed"), book("C", status="Reading", owner=OTHER)]
    )

    result = await dispatcher.dispatch(intent("CURRENTLY_READING"), OWNER, False)

    assert [r["title"] for r in result.rows] == ["A"]


@pytest.mark.asyncio
async def test_currently_reading_for_admin_returns_completed_books():
    # Existing behaviour: the admin variant lists completed books library-wide
    dispatcher, _ = make_dispatcher(
        [book("A", status="Reading"), book("B", status="Completed"), book("C", status="Completed", owner=OTHER)]
    )

    result = await dispatcher.dispatch(intent("CURRENTLY_READING"), OWNER, True)

    assert [r["title"] for r in result.rows] == ["B", "C"]
    assert {r["status"] for r in result.rows} == {"Completed"}


@pytest.mark.asyncio
async def test_general_statistics():
    dispatcher, _ = make_dispatcher(
        [
            book("A", "Fiction", "10.00"),
            book("B", "Fantasy", "30.00", owner=OTHER),
            book("C", "Fantasy", "20.00", owner=OTHER),
        ]
    )

    result = await dispatcher.dispatch(intent("GENERAL_STATISTICS"), OWNER, True)

    assert result.rows == [
        {"metric": "Total Books", "value": 3},
        {"metric": "Total Users with Books", "value": 2},
        {"metric": "Average Books per User", "value": 1.5},
        {"metric": "Most Expensive Book", "value": 30.0},
        {"metric": "Average Book Price", "value": 20.0},
        {"metric": "Most Popular Genre", "value": "Fantasy"},
    ]


@pytest.mark.asyncio
async def test_general_statistics_on_empty_library():
    dispatcher, _ = make_dispatcher([])

    result = await dispatcher.dispatch(intent("GENERAL_STATISTICS"), OWNER, True)

    assert result.rows[0] == {"metric": "Total Books", "value": 0}
    assert result.rows[-1] == {"metric": "Most Popular Genre", "value": "N/A"}


@pytest.mark.asyncio
async def test_query_type_is_matched_case_insensitively():
    dispatcher, _ = make_dispatcher([book("A")])

    result = await dispatcher.dispatch(intent("my_book_count"), OWNER, False)

    assert result.rows == [{"metric": "Total Books", "value": 1}]


@pytest.mark.asyncio
async def test_unknown_query_type_is_rejected():
    dispatcher, store = make_dispatcher([book("A")])

    with pytest.raises(QueryValidationError, match="not supported"):
        await dispatcher.dispatch(intent("DELETE_EVERYTHING"), OWNER, True)

    assert store.calls == []


@pytest.mark.asyncio
async def test_rows_are_flat():
    dispatcher, _ = make_dispatcher([book("A", price="9.99"), book("B", status="Reading")])

    for query_type in ("EXPENSIVE_BOOKS", "BOOKS_BY_GENRE", "USER_STATISTICS", "GENERAL_STATISTICS"):
        result = await dispatcher.dispatch(intent(query_type), OWNER, True)
        for row in result.rows:
            assert all(not isinstance(v, (dict, list, tuple, set)) for v in row.values())
