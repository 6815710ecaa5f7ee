import logging
from typing import List, Annotated
from fastapi import APIRouter, HTTPException, Query, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookmind.ai_feature.invalidation import InvalidationBroadcaster, get_invalidator
from bookmind.core import schemas, models
from bookmind.core.book_store import BookStore
from bookmind.core.database import get_db
from bookmind.core.security import get_current_user, validate_admin_role

router = APIRouter(prefix="/books", tags=["Books"])


def get_book_store(db: Annotated[AsyncSession, Depends(get_db)]) -> BookStore:
    return BookStore(db)


store_dep = Annotated[BookStore, Depends(get_book_store)]
user_dep = Annotated[models.User, Depends(get_current_user)]
admin_dep = Annotated[models.User, Depends(validate_admin_role)]
invalidator_dep = Annotated[InvalidationBroadcaster, Depends(get_invalidator)]


async def _get_owned_book(store: BookStore, book_id: int, user: models.User) -> models.Book:
    book = await store.get(book_id)
    if book is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Book {book_id} not found")
    if book.owner_id != user.id:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "You don't have permission to access this book"
        )
    return book


# My books
@router.get("/my-books", response_model=List[schemas.BookListItem])
async def get_my_books(current_user: user_dep, store: store_dep):
    return await store.by_owner(current_user.id)


@router.get("/my-books/count")
async def get_my_books_count(current_user: user_dep, store: store_dep):
    return {"count": await store.count_by_owner(current_user.id)}


@router.get("/search", response_model=List[schemas.BookListItem])
async def search_books(
    current_user: user_dep,
    store: store_dep,
    search: Annotated[str, Query(min_length=1, max_length=100)],
):
    if not search.strip():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Search string is required")
    return await store.search(current_user.id, search.strip())


# Admin views
@router.get("/admin/all", response_model=List[schemas.BookListItem])
async def get_all_books(admin: admin_dep, store: store_dep):
    return await store.all_for_admin()


@router.get("/admin/count")
async def get_total_books_count(admin: admin_dep, store: store_dep):
    return {"total_books": await store.count_all()}


@router.get("/admin/{book_id}", response_model=schemas.BookResponse)
async def get_any_book(book_id: int, admin: admin_dep, store: store_dep):
    book = await store.get(book_id)
    if book is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Book {book_id} not found")
    return book


@router.delete("/admin/{book_id}")
async def delete_any_book(
    book_id: int, admin: admin_dep, store: store_dep, invalidator: invalidator_dep
):
    book = await store.get(book_id)
    if book is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Book {book_id} not found")

    owner_id = book.owner_id
    try:
        await store.delete(book)
    except Exception as error:
        await store.rollback()
        logging.error(f"Admin failed to delete book {book_id}: {error}")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Delete failed")

    invalidator.invalidate(owner_id)
    return {"message": f"Deleted book {book_id}"}


# Single book
@router.get("/{book_id}", response_model=schemas.BookResponse)
async def get_book(book_id: int, current_user: user_dep, store: store_dep):
    return await _get_owned_book(store, book_id, current_user)


@router.post(
    "",
    response_model=schemas.BookResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_book(
    book: schemas.BookCreate,
    current_user: user_dep,
    store: store_dep,
    invalidator: invalidator_dep,
):
    try:
        data = book.model_dump()
        data["reading_status"] = book.reading_status.value
        new_book = await store.save(models.Book(**data, owner_id=current_user.id))
    except Exception as error:
        await store.rollback()
        logging.error(f"Database error: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add a book",
        )

    invalidator.invalidate(current_user.id)
    return new_book


@router.put("/{book_id}", response_model=schemas.BookResponse)
async def update_book(
    book_id: int,
    changes: schemas.BookUpdate,
    current_user: user_dep,
    store: store_dep,
    invalidator: invalidator_dep,
):
    book = await _get_owned_book(store, book_id, current_user)

    # Only touch the fields the client actually sent
    for key, value in changes.model_dump(exclude_unset=True).items():
        if isinstance(value, schemas.ReadingStatus):
            value = value.value
        setattr(book, key, value)

    try:
        book = await store.save(book)
    except Exception as error:
        await store.rollback()
        logging.error(f"Failed to commit a change: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Update failed"
        )

    invalidator.invalidate(current_user.id)
    return book


@router.delete("/{book_id}", status_code=status.HTTP_200_OK)
async def delete_book(
    book_id: int,
    current_user: user_dep,
    store: store_dep,
    invalidator: invalidator_dep,
):
    book = await _get_owned_book(store, book_id, current_user)
    try:
        await store.delete(book)
    except Exception as error:
        await store.rollback()
        logging.error(f"Failed to delete book {book_id}: {error}")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Delete failed")

    invalidator.invalidate(current_user.id)
    return {"message": f"Deleted book {book_id}"}
