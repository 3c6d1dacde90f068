import enum
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from library_api.database import Base, CatalogBase
from library_api.errors import RenewalNotAllowedError


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_document_id() -> str:
    return uuid.uuid4().hex


class Role(str, enum.Enum):
    USER = "user"
    LIBRARIAN = "librarian"
    ADMIN = "admin"


STAFF_ROLES = (Role.LIBRARIAN.value, Role.ADMIN.value)


class LoanStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"
    RENEWED = "renewed"


# A loan in one of these states still holds the book
OPEN_STATUSES = (LoanStatus.ACTIVE.value, LoanStatus.RENEWED.value)


class BookStatus(str, enum.Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    DAMAGED = "damaged"
    LOST = "lost"
    MAINTENANCE = "maintenance"


class BookCondition(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"


class IdentifierType(str, enum.Enum):
    ISBN_10 = "ISBN_10"
    ISBN_13 = "ISBN_13"
    ISSN = "ISSN"
    OTHER = "OTHER"


# User model
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firstname = Column(String(100), nullable=False)
    lastname = Column(String(100), nullable=False)
    username = Column(String(50), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=Role.USER.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    loans = relationship("Loan", back_populates="user")

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


# Loan model. book_id references a catalog document, so it is not a foreign key.
class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        Index("ix_loans_user_id", "user_id"),
        Index("ix_loans_book_id", "book_id"),
        Index("ix_loans_status", "status"),
        Index("ix_loans_due_date", "due_date"),
        Index(
            "unique_active_loan",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'renewed')"),
            postgresql_where=text("status IN ('active', 'renewed')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    book_id = Column(String(64), nullable=False)
    book_title = Column(String(500), nullable=False)
    book_author = Column(String(300), nullable=True)
    book_isbn = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=LoanStatus.ACTIVE.value)
    borrowed_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    returned_date = Column(DateTime, nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    max_renewals = Column(Integer, nullable=False, default=2)
    librarian_notes = Column(Text, nullable=True)
    late_fees = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="loans")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def overdue_at(self, now: datetime) -> bool:
        return self.is_open and now > self.due_date

    @property
    def is_overdue(self) -> bool:
        return self.overdue_at(utcnow())

    def can_renew(self) -> bool:
        return self.is_open and self.renewal_count < self.max_renewals

    def renew(self, days: int) -> None:
        if not self.can_renew():
            raise RenewalNotAllowedError("This loan cannot be renewed")
        self.renewal_count += 1
        self.status = LoanStatus.RENEWED.value
        self.due_date = self.due_date + timedelta(days=days)

    def mark_returned(self, when: datetime, fee_per_day: Decimal) -> None:
        self.status = LoanStatus.RETURNED.value
        self.returned_date = when
        days_late = (when.date() - self.due_date.date()).days
        if days_late > 0:
            self.late_fees = (Decimal(days_late) * fee_per_day).quantize(Decimal("0.01"))


# Book model, stored in the catalog database as a nested document
class Book(CatalogBase):
    __tablename__ = "books"
    __table_args__ = (
        Index("ix_books_status", "status"),
        Index("ix_books_title", "title"),
    )

    id = Column(String(64), primary_key=True, default=new_document_id)
    title = Column(String(500), nullable=False)
    subtitle = Column(String(500), nullable=True)
    authors = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    genre = Column(String(100), nullable=True)
    language = Column(String(10), nullable=False, default="fr")
    publisher = Column(String(255), nullable=True)
    published_date = Column(String(20), nullable=True)
    page_count = Column(Integer, nullable=True)
    identifiers = Column(JSON, nullable=False, default=list)
    cover = Column(String(1000), nullable=True)
    status = Column(String(20), nullable=False, default=BookStatus.AVAILABLE.value)
    library = Column(JSON, nullable=False)
    is_enriched = Column(Boolean, nullable=False, default=False)
    last_enrichment_date = Column(DateTime, nullable=True)
    total_borrows = Column(Integer, nullable=False, default=0)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def author(self) -> str:
        return self.authors[0] if self.authors else "Unknown author"

    @property
    def isbn(self) -> Optional[str]:
        if not self.identifiers:
            return None
        for wanted in (IdentifierType.ISBN_13.value, IdentifierType.ISBN_10.value):
            for item in self.identifiers:
                if item.get("type") == wanted:
                    return item.get("identifier")
        return self.identifiers[0].get("identifier")

    @property
    def location(self) -> Optional[str]:
        return (self.library or {}).get("location")

    @property
    def is_available(self) -> bool:
        return self.status == BookStatus.AVAILABLE.value

    def short_info(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "cover": self.cover,
            "status": self.status,
            "location": self.location,
        }
