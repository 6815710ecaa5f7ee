from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Numeric,
    TIMESTAMP,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from bookmind.core.database import Base


# =========================
# User
# =========================
class User(Base):
    __tablename__ = "users_table"

    id = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String, nullable=False, unique=True, index=True)
    username = Column(String, nullable=True)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, server_default="user")

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    books = relationship(
        "Book",
        back_populates="owner",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# =========================
# Book
# =========================
class Book(Base):
    """
    A single book in somebody's personal collection.

    The same title may appear many times across the library, once per owner.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    genre = Column(String, nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    # NotStarted / Reading / Completed
    reading_status = Column(
        String, nullable=False, default="NotStarted", server_default="NotStarted"
    )
    publication_year = Column(Integer, nullable=True)
    rating = Column(Integer, nullable=True)
    cover_image_url = Column(String, nullable=True)

    owner_id = Column(
        Integer,
        ForeignKey("users_table.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(TIMESTAMP(timezone=True), nullable=True, onupdate=func.now())

    # Relationships
    owner = relationship("User", back_populates="books")
