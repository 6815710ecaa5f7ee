from typing import List, Optional, Sequence

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookmind.core import models
from bookmind.core.schemas import ReadingStatus


class BookStore:
    """Read and write access to book records over one async session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _all(self, query) -> List[models.Book]:
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # Newest first, id breaks ties between rows created in the same instant
    @staticmethod
    def _newest_first(query):
        return query.order_by(desc(models.Book.created_at), desc(models.Book.id))

    async def by_owner(self, owner_id: int) -> List[models.Book]:
        query = select(models.Book).where(models.Book.owner_id == owner_id)
        return await self._all(self._newest_first(query))

    async def by_owner_and_genre(self, owner_id: int, genre: str) -> List[models.Book]:
        query = (
            select(models.Book)
            .where(models.Book.owner_id == owner_id, models.Book.genre == genre)
            .order_by(models.Book.title)
        )
        return await self._all(query)

    async def by_owner_and_status(
        self, owner_id: int, status: ReadingStatus
    ) -> List[models.Book]:
        query = (
            select(models.Book)
            .where(
                models.Book.owner_id == owner_id,
                models.Book.reading_status == status.value,
            )
            .order_by(
                desc(func.coalesce(models.Book.updated_at, models.Book.created_at)),
                desc(models.Book.id),
            )
        )
        return await self._all(query)

    async def all_for_admin(self) -> List[models.Book]:
        return await self._all(self._newest_first(select(models.Book)))

    async def count_by_owner(self, owner_id: int) -> int:
        query = select(func.count(models.Book.id)).where(
            models.Book.owner_id == owner_id
        )
        result = await self.db.execute(query)
        return result.scalar_one()

    async def count_all(self) -> int:
        result = await self.db.execute(select(func.count(models.Book.id)))
        return result.scalar_one()

    async def search(self, owner_id: int, term: str) -> List[models.Book]:
        pattern = f"%{term.lower()}%"
        query = (
            select(models.Book)
            .where(
                models.Book.owner_id == owner_id,
                or_(
                    func.lower(models.Book.title).like(pattern),
                    func.lower(models.Book.author).like(pattern),
                ),
            )
            .order_by(models.Book.title)
        )
        return await self._all(query)

    async def get(self, book_id: int) -> Optional[models.Book]:
        result = await self.db.execute(
            select(models.Book).where(models.Book.id == book_id)
        )
        return result.scalars().first()

    async def save(self, book: models.Book) -> models.Book:
        self.db.add(book)
        await self.db.commit()
        await self.db.refresh(book)
        return book

    async def delete(self, book: models.Book) -> None:
        await self.db.delete(book)
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


class UserDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[models.User]:
        result = await self.db.execute(
            select(models.User).where(models.User.id == user_id)
        )
        return result.scalars().first()

    async def get_user_names(self, user_ids: Sequence[int]) -> dict:
        """Map user id to a display name (username, falling back to email)."""
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(models.User.id, models.User.username, models.User.email).where(
                models.User.id.in_(list(user_ids))
            )
        )
        return {row.id: row.username or row.email for row in result.all()}

    async def get_user_name(self, user_id: int) -> Optional[str]:
        names = await self.get_user_names([user_id])
        return names.get(user_id)

    async def all_users(self) -> List[models.User]:
        result = await self.db.execute(select(models.User).order_by(models.User.id))
        return list(result.scalars().all())
