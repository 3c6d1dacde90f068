import csv
import io
import logging
import math
from typing import List, Optional, Tuple

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from library_api import models, schemas
from library_api.errors import AuthenticationError, ConflictError, NotFoundError
from library_api.security import hash_password, verify_password

logger = logging.getLogger(__name__)


# Users


def get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def find_user_by_identifier(db: Session, identifier: str) -> Optional[models.User]:
    """Active user whose username or email matches."""
    return (
        db.query(models.User)
        .filter(
            or_(models.User.username == identifier, models.User.email == identifier),
            models.User.is_active.is_(True),
        )
        .first()
    )


def build_user(user_data: schemas.UserCreate) -> models.User:
    role = user_data.role if user_data.role in [r.value for r in models.Role] else models.Role.USER.value
    return models.User(
        firstname=user_data.firstname.strip(),
        lastname=user_data.lastname.strip(),
        username=user_data.username.strip(),
        email=user_data.email.strip().lower(),
        password_hash=hash_password(user_data.password),
        role=role,
        is_active=True,
    )


def create_user(db: Session, user_data: schemas.UserCreate) -> models.User:
    existing = (
        db.query(models.User)
        .filter(
            or_(
                models.User.username == user_data.username.strip(),
                models.User.email == user_data.email.strip().lower(),
            )
        )
        .first()
    )
    if existing:
        raise ConflictError("Username or email already in use")

    new_user = build_user(user_data)
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    logger.info("User %s registered with role %s", new_user.username, new_user.role)
    return new_user


def authenticate_user(db: Session, identifier: str, password: str) -> models.User:
    user = find_user_by_identifier(db, identifier)
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    user.last_login = models.utcnow()
    db.commit()
    db.refresh(user)
    return user


def ensure_admin(db: Session, username: str, password: str) -> models.User:
    """Create the bootstrap administrator if it does not exist yet."""
    user = db.query(models.User).filter(models.User.username == username).first()
    if user:
        return user
    user = build_user(
        schemas.UserCreate(
            firstname="Admin",
            lastname="Library",
            username=username,
            email=f"{username}@library.local",
            password=password,
            role=models.Role.ADMIN.value,
        )
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Bootstrap administrator %s created", username)
    return user


# Books


def _clean_list(values) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    return [v.strip() for v in values if v and v.strip()]


def build_book(book_data: schemas.BookCreate, librarian: str) -> models.Book:
    """Create an unsaved Book with every derived field computed."""
    authors = _clean_list(book_data.authors) or ["Unknown author"]
    categories = _clean_list(book_data.categories)

    identifiers = [i.model_dump(mode="json") for i in book_data.identifiers or []]
    if book_data.isbn and not any(i["identifier"] == book_data.isbn for i in identifiers):
        digits = book_data.isbn.replace("-", "").strip()
        kind = models.IdentifierType.ISBN_13 if len(digits) == 13 else models.IdentifierType.ISBN_10
        identifiers.insert(0, {"type": kind.value, "identifier": book_data.isbn.strip()})

    return models.Book(
        title=book_data.title,
        subtitle=book_data.subtitle,
        authors=authors,
        description=book_data.description,
        categories=categories,
        genre=book_data.genre or (categories[0] if categories else None),
        language=book_data.language or "fr",
        publisher=book_data.publisher,
        published_date=book_data.published_date,
        page_count=book_data.page_count,
        identifiers=identifiers,
        cover=book_data.cover,
        status=models.BookStatus.AVAILABLE.value,
        library={
            "location": book_data.location,
            "acquisition_date": models.utcnow().isoformat(),
            "condition": book_data.condition.value,
            "price": book_data.price,
            "notes": book_data.notes or "",
            "librarian": book_data.librarian or librarian,
        },
        tags=[t.lower() for t in _clean_list(book_data.tags)],
        total_borrows=0,
    )


def find_book_by_isbn(catalog: Session, isbn: str) -> Optional[models.Book]:
    pattern = f'%"{isbn}"%'
    candidates = catalog.query(models.Book).filter(cast(models.Book.identifiers, String).like(pattern))
    for book in candidates:
        if any(i.get("identifier") == isbn for i in book.identifiers):
            return book
    return None


def create_book(catalog: Session, book_data: schemas.BookCreate, librarian: str) -> models.Book:
    if book_data.isbn and find_book_by_isbn(catalog, book_data.isbn.strip()):
        raise ConflictError("A book with this ISBN already exists")

    new_book = build_book(book_data, librarian)
    catalog.add(new_book)
    catalog.commit()
    catalog.refresh(new_book)
    logger.info("Book added: %s by %s", new_book.title, new_book.author)
    return new_book


def get_book(catalog: Session, book_id: str) -> models.Book:
    book = catalog.get(models.Book, book_id)
    if book is None:
        raise NotFoundError("Book not found")
    return book


def list_books(
    catalog: Session,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    category: Optional[str] = None,
    author: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "title",
    sort_order: str = "asc",
) -> Tuple[List[models.Book], dict]:
    query = catalog.query(models.Book)

    if status:
        query = query.filter(models.Book.status == status)
    if category:
        query = query.filter(cast(models.Book.categories, String).like(f'%"{category}"%'))
    if author:
        query = query.filter(cast(models.Book.authors, String).ilike(f"%{author}%"))
    if search:
        term = f"%{search}%"
        query = query.filter(
            or_(
                models.Book.title.ilike(term),
                cast(models.Book.authors, String).ilike(term),
                models.Book.description.ilike(term),
            )
        )

    sortable = {
        "title": models.Book.title,
        "created_at": models.Book.created_at,
        "total_borrows": models.Book.total_borrows,
        "status": models.Book.status,
    }
    column = sortable.get(sort_by, models.Book.title)
    query = query.order_by(column.desc() if sort_order == "desc" else column.asc())

    total = query.count()
    books = query.offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 1,
        "total_books": total,
        "has_next_page": page * limit < total,
        "has_prev_page": page > 1,
    }
    return books, pagination


def popular_books(catalog: Session, limit: int = 10) -> List[models.Book]:
    return (
        catalog.query(models.Book)
        .filter(models.Book.status == models.BookStatus.AVAILABLE.value)
        .order_by(models.Book.total_borrows.desc(), models.Book.title.asc())
        .limit(limit)
        .all()
    )


def recent_books(catalog: Session, limit: int = 10) -> List[models.Book]:
    # Books are acquired when they are created, so created_at orders acquisitions
    return (
        catalog.query(models.Book)
        .filter(models.Book.status == models.BookStatus.AVAILABLE.value)
        .order_by(models.Book.created_at.desc())
        .limit(limit)
        .all()
    )


def book_stats(catalog: Session) -> dict:
    counts = dict(
        catalog.query(models.Book.status, func.count(models.Book.id))
        .group_by(models.Book.status)
        .all()
    )
    total = sum(counts.values())
    enriched = catalog.query(func.count(models.Book.id)).filter(models.Book.is_enriched.is_(True)).scalar()
    return {
        "total": total,
        "available": counts.get(models.BookStatus.AVAILABLE.value, 0),
        "borrowed": counts.get(models.BookStatus.BORROWED.value, 0),
        "reserved": counts.get(models.BookStatus.RESERVED.value, 0),
        "damaged": counts.get(models.BookStatus.DAMAGED.value, 0),
        "enriched": enriched,
        "enrichment_rate": round(enriched / total * 100) if total else 0,
    }


def update_book(catalog: Session, book_id: str, book_data: schemas.BookUpdate) -> models.Book:
    book = get_book(catalog, book_id)
    changes = book_data.model_dump(exclude_unset=True, mode="json")

    # An explicit null leaves required fields untouched
    for key in ("title", "status", "language", "identifiers", "location"):
        if key in changes and changes[key] is None:
            changes.pop(key)

    library = dict(book.library or {})
    for key in ("location", "condition", "price", "notes"):
        if key in changes:
            library[key] = changes.pop(key)
    book.library = library

    if "authors" in changes:
        changes["authors"] = _clean_list(changes["authors"]) or ["Unknown author"]
    if "categories" in changes:
        changes["categories"] = _clean_list(changes["categories"])
    if "tags" in changes:
        changes["tags"] = [t.lower() for t in _clean_list(changes["tags"])]

    for key, value in changes.items():
        setattr(book, key, value)

    catalog.commit()
    catalog.refresh(book)
    logger.info("Book updated: %s", book.title)
    return book


def delete_book(catalog: Session, book_id: str) -> models.Book:
    book = get_book(catalog, book_id)
    if book.status == models.BookStatus.BORROWED.value:
        raise ConflictError("Cannot delete a borrowed book")
    catalog.delete(book)
    catalog.commit()
    logger.info("Book deleted: %s", book.title)
    return book


# Stats


def get_admin_dashboard_stats(db: Session, catalog: Session) -> dict:
    now = models.utcnow()
    open_loans = db.query(func.count(models.Loan.id)).filter(models.Loan.status.in_(models.OPEN_STATUSES))
    return {
        "total_users": db.query(func.count(models.User.id)).scalar(),
        "total_books": catalog.query(func.count(models.Book.id)).scalar(),
        "active_loans": open_loans.scalar(),
        "overdue_loans": open_loans.filter(models.Loan.due_date < now).scalar(),
    }


# Exports


def generate_loans_csv(loans: List[models.Loan]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(["Loan ID", "Book Title", "Borrowed", "Due Date", "Returned", "Status", "Late Fees"])
    for loan in loans:
        writer.writerow([
            loan.id,
            loan.book_title,
            loan.borrowed_date.date(),
            loan.due_date.date(),
            loan.returned_date.date() if loan.returned_date else "",
            loan.status,
            f"{loan.late_fees or 0:.2f}",
        ])

    return output.getvalue()


def generate_loans_pdf(loans: List[models.Loan], owner: models.User) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    width, height = letter

    y = height - 40
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(40, y, f"Loan History - {owner.firstname} {owner.lastname}")
    y -= 30

    pdf.setFont("Helvetica", 10)
    for loan in loans:
        returned = loan.returned_date.date().isoformat() if loan.returned_date else "-"
        line = (
            f"{loan.id}: {loan.book_title} | Due: {loan.due_date.date()} | "
            f"Returned: {returned} | Status: {loan.status} | Fees: {loan.late_fees or 0:.2f}"
        )
        pdf.drawString(40, y, line)
        y -= 18
        if y < 50:
            pdf.showPage()
            y = height - 40
            pdf.setFont("Helvetica", 10)

    pdf.save()
    buffer.seek(0)
    return buffer.read()
