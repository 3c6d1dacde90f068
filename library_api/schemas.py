from datetime import datetime
from typing import Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, Field, field_validator

from library_api.models import BookCondition, BookStatus, IdentifierType, Role

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


# Users


class UserCreate(BaseModel):
    firstname: str = Field(min_length=1, max_length=100)
    lastname: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=1)
    role: Optional[str] = Role.USER.value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value):
        # bcrypt only hashes the first 72 bytes
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password cannot be longer than 72 bytes")
        return value


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserConfig(BaseModel):
    id: int
    firstname: str
    lastname: str
    username: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class UserSummary(BaseModel):
    id: int
    firstname: str
    lastname: str
    email: str

    model_config = {
        "from_attributes": True
    }


class AuthPayload(BaseModel):
    user: UserConfig
    token: str


# Books


class Identifier(BaseModel):
    type: IdentifierType
    identifier: str = Field(min_length=1)


class BookBase(BaseModel):
    subtitle: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = Field(default=None, max_length=5000)
    categories: Optional[List[str]] = None
    genre: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=0)
    identifiers: Optional[List[Identifier]] = None
    cover: Optional[str] = None
    tags: Optional[List[str]] = None

    # library information
    condition: Optional[BookCondition] = None
    price: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("cover")
    @classmethod
    def cover_must_be_url(cls, value):
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise ValueError("Cover must be a valid URL")
        return value

    @field_validator("title", "location", mode="before", check_fields=False)
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class BookCreate(BookBase):
    title: str = Field(min_length=1, max_length=500)
    authors: Union[List[str], str, None] = None
    isbn: Optional[str] = None
    location: str = Field(min_length=1)
    condition: BookCondition = BookCondition.GOOD
    librarian: Optional[str] = None


class BookUpdate(BookBase):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    authors: Union[List[str], str, None] = None
    status: Optional[BookStatus] = None
    location: Optional[str] = Field(default=None, min_length=1)


class BookSummary(BaseModel):
    id: str
    title: str
    author: str
    cover: Optional[str] = None
    status: str
    location: Optional[str] = None


class BookConfig(BaseModel):
    id: str
    title: str
    subtitle: Optional[str] = None
    authors: List[str]
    author: str
    isbn: Optional[str] = None
    description: Optional[str] = None
    categories: List[str] = []
    genre: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    identifiers: List[dict] = []
    cover: Optional[str] = None
    status: str
    library: dict
    is_enriched: bool = False
    total_borrows: int = 0
    tags: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_books: int
    has_next_page: bool
    has_prev_page: bool


class BookListEnvelope(Envelope[List[BookConfig]]):
    pagination: Pagination


class BookStats(BaseModel):
    total: int
    available: int
    borrowed: int
    reserved: int
    damaged: int
    enriched: int
    enrichment_rate: int


# Loans


class LoanCreate(BaseModel):
    book_id: str = Field(alias="bookId", min_length=1)
    user_id: int = Field(alias="userId")

    model_config = {
        "populate_by_name": True
    }


class LoanAction(BaseModel):
    user_id: int = Field(alias="userId")

    model_config = {
        "populate_by_name": True
    }


class LoanConfig(BaseModel):
    id: int
    user_id: int
    book_id: str
    book_title: str
    book_author: Optional[str] = None
    book_isbn: Optional[str] = None
    status: str
    borrowed_date: datetime
    due_date: datetime
    returned_date: Optional[datetime] = None
    renewal_count: int
    max_renewals: int
    late_fees: float = 0.0
    librarian_notes: Optional[str] = None
    is_overdue: bool = False

    model_config = {
        "from_attributes": True
    }


class LoanWithUser(LoanConfig):
    user: Optional[UserSummary] = None


class BorrowResult(BaseModel):
    loan: LoanConfig
    book: BookSummary


class UserLoan(BaseModel):
    id: int
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    status: str
    borrowed_date: datetime
    due_date: datetime
    renewal_count: int
    max_renewals: int
    is_overdue: bool
    book: Optional[BookSummary] = None


# Admin


class AdminStats(BaseModel):
    total_users: int
    total_books: int
    active_loans: int
    overdue_loans: int
