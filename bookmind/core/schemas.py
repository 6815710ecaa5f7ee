from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel


# =========================
# Enums
# =========================
class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ReadingStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    READING = "Reading"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value) -> Optional["ReadingStatus"]:
        """Lenient lookup: "reading", "not started", "NOT_STARTED" and "1" all resolve."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        if text.isdecimal():
            members = list(cls)
            try:
                index = int(text)
            except ValueError:
                return None
            return members[index] if index < len(members) else None
        wanted = "".join(ch for ch in text.lower() if ch not in " _-")
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return None


ACTIVE_STATUSES = (ReadingStatus.READING, ReadingStatus.COMPLETED)


class ChartHint(str, Enum):
    BAR = "bar"
    TABLE = "table"
    SINGLE = "single"


# =========================
# USER
# =========================
class UserBase(BaseModel):
    email: EmailStr
    username: Optional[str] = Field(default=None, max_length=64)


# Signup never takes a role, new accounts are always regular users
class CreateUser(UserBase):
    password: str = Field(min_length=8)
    model_config = ConfigDict(from_attributes=True)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(UserBase):
    id: int
    role: UserRole = UserRole.USER
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# =========================
# BOOK
# =========================
class BookBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=120)
    genre: str = Field(min_length=1, max_length=60)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    reading_status: ReadingStatus = ReadingStatus.NOT_STARTED
    publication_year: Optional[int] = Field(default=None, ge=0, le=2100)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    cover_image_url: Optional[str] = None


class BookCreate(BookBase):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    author: Optional[str] = Field(default=None, min_length=1, max_length=120)
    genre: Optional[str] = Field(default=None, min_length=1, max_length=60)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    reading_status: Optional[ReadingStatus] = None
    publication_year: Optional[int] = Field(default=None, ge=0, le=2100)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    cover_image_url: Optional[str] = None


class BookListItem(BaseModel):
    id: int
    title: str
    author: str
    genre: str
    price: Decimal
    reading_status: ReadingStatus

    model_config = ConfigDict(from_attributes=True)


class BookResponse(BookBase):
    id: int
    owner_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# =========================
# AI QUERY
# =========================
# Rows are flat: a cell is always a scalar, never a nested container
Scalar = Union[str, int, float, bool, None]
Row = Dict[str, Scalar]


class QueryParameters(BaseModel):
    limit: Optional[int] = None
    genre: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class QueryIntent(BaseModel):
    """What the language model decided the question is asking for."""

    query_type: str = Field(alias="querytype", min_length=1)
    parameters: QueryParameters = Field(default_factory=QueryParameters)

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class QueryResult(BaseModel):
    rows: List[Row] = []
    chart_hint: ChartHint = ChartHint.TABLE

    model_config = ConfigDict(frozen=True)


class AiQueryRequest(BaseModel):
    question: str = Field(min_length=1, max_length=500)


class AiQueryResponse(BaseModel):
    """
    Envelope returned by the assistant and stored verbatim in the cache.

    Serialized with camelCase keys (interpretedQuery, chartType, errorMessage).
    """

    success: bool
    answer: str = ""
    interpreted_query: Optional[str] = None
    data: Optional[List[Row]] = None
    chart_type: Optional[ChartHint] = None
    error_message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# INSIGHTS
# =========================
class InsightItem(BaseModel):
    type: str
    title: str
    description: str


class LibraryStatistics(BaseModel):
    total_books: int = 0
    total_users: Optional[int] = None
    most_popular_genre: str = "N/A"
    most_active_user: Optional[str] = None
    completed_books_count: int = 0
    in_progress_books_count: int = 0
    genre_distribution: Dict[str, int] = {}
    status_distribution: Dict[str, int] = {}

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LibraryInsights(BaseModel):
    summary: str
    insights: List[InsightItem] = []
    statistics: LibraryStatistics = Field(default_factory=LibraryStatistics)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReadingHabits(BaseModel):
    user_id: int
    user_name: Optional[str] = None
    summary: str
    preferred_genres: List[str] = []
    total_books: int = 0
    completed_books: int = 0
    books_in_progress: int = 0
    reading_pattern: str = "Derived from activity"
    characteristics: List[str] = []

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# RECOMMENDATIONS
# =========================
class RecommendationRequest(BaseModel):
    count: int = Field(default=5, ge=1, le=10)


class BookRecommendation(BaseModel):
    title: str = Field(min_length=1)
    author: str = ""
    genre: str = ""
    estimated_price: Optional[float] = Field(default=None, ge=0)
    reason: str = ""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecommendationResponse(BaseModel):
    success: bool
    message: str = ""
    recommendations: List[BookRecommendation] = []
    recommendation_type: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveRecommendationRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=120)
    genre: str = Field(min_length=1, max_length=60)
    estimated_price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DismissRecommendationRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class RecommendationAction(BaseModel):
    success: bool
    message: str
