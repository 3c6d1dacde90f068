"""Loan ledger: the borrow / return / renew workflow.

Loans live in the relational store and point at catalog books by id. Every
operation checks its preconditions explicitly, then writes the loan before it
touches the catalog, so a failed borrow never leaves a book marked borrowed.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from library_api import models
from library_api.config import settings
from library_api.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def build_loan(
    user: models.User,
    book: models.Book,
    borrowed_date: datetime,
    due_date: Optional[datetime] = None,
    period_days: int = 14,
    max_renewals: int = 2,
) -> models.Loan:
    """Create an unsaved loan with its due date and cached book fields filled in."""
    return models.Loan(
        user_id=user.id,
        book_id=book.id,
        book_title=book.title,
        book_author=book.author,
        book_isbn=book.isbn,
        status=models.LoanStatus.ACTIVE.value,
        borrowed_date=borrowed_date,
        due_date=due_date or borrowed_date + timedelta(days=period_days),
        renewal_count=0,
        max_renewals=max_renewals,
    )


class LoanLedger:
    def __init__(self, db: Session, catalog: Session, config=settings):
        self.db = db
        self.catalog = catalog
        self.period_days = config.loan_period_days
        self.max_renewals = config.max_renewals
        self.late_fee_per_day = config.late_fee_per_day

    # Borrow
    def borrow(self, user_id: int, book_id: str) -> Tuple[models.Loan, models.Book]:
        user = self.db.get(models.User, user_id)
        if user is None or not user.is_active:
            raise NotFoundError("User not found")

        book = self.catalog.get(models.Book, book_id)
        if book is None:
            raise NotFoundError("Book not found")

        if not book.is_available:
            raise ConflictError(f"This book is not available (status: {book.status})")

        if self._open_loan_query(user_id=user_id, book_id=book_id).first() is not None:
            raise ConflictError("You have already borrowed this book")

        now = models.utcnow()
        loan = build_loan(
            user,
            book,
            borrowed_date=now,
            period_days=self.period_days,
            max_renewals=self.max_renewals,
        )
        self.db.add(loan)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.warning("Duplicate open loan rejected by index: user=%s book=%s", user_id, book_id)
            raise ConflictError("You have already borrowed this book")

        # Claim the book only if nobody else did in the meantime
        claimed = self.catalog.execute(
            update(models.Book)
            .where(
                models.Book.id == book_id,
                models.Book.status == models.BookStatus.AVAILABLE.value,
            )
            .values(
                status=models.BookStatus.BORROWED.value,
                total_borrows=models.Book.total_borrows + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            self.catalog.rollback()
            self.db.rollback()
            logger.warning("Lost borrow race: user=%s book=%s", user_id, book_id)
            raise ConflictError("This book is not available (status: borrowed)")

        try:
            self.db.commit()
        except Exception:
            self.catalog.rollback()
            raise
        self.catalog.commit()

        self.db.refresh(loan)
        self.catalog.refresh(book)
        logger.info("Loan %s created: user=%s book=%s due=%s", loan.id, user_id, book_id, loan.due_date)
        return loan, book

    # Return
    def return_loan(self, loan_id: int, user_id: int) -> models.Loan:
        loan = self._open_loan_query(loan_id=loan_id, user_id=user_id).with_for_update().first()
        if loan is None:
            raise NotFoundError("Loan not found or already returned")
        return self._close(loan)

    def return_book(self, book_id: str) -> models.Loan:
        loan = self._open_loan_query(book_id=book_id).with_for_update().first()
        if loan is None:
            raise NotFoundError("No active loan for this book")
        return self._close(loan)

    def _close(self, loan: models.Loan) -> models.Loan:
        now = models.utcnow()
        loan.mark_returned(now, self.late_fee_per_day)
        self.db.commit()
        self.db.refresh(loan)

        book = self.catalog.get(models.Book, loan.book_id)
        if book is None:
            logger.warning("Returned loan %s references missing book %s", loan.id, loan.book_id)
        else:
            book.status = models.BookStatus.AVAILABLE.value
            self.catalog.commit()

        logger.info("Loan %s returned: user=%s book=%s late_fees=%s", loan.id, loan.user_id, loan.book_id, loan.late_fees)
        return loan

    # Renew
    def renew(self, loan_id: int, user_id: int) -> models.Loan:
        loan = self._open_loan_query(loan_id=loan_id, user_id=user_id).with_for_update().first()
        if loan is None:
            raise NotFoundError("Loan not found")

        loan.renew(self.period_days)
        self.db.commit()
        self.db.refresh(loan)
        logger.info("Loan %s renewed (%s/%s), due %s", loan.id, loan.renewal_count, loan.max_renewals, loan.due_date)
        return loan

    # Queries
    def list_loans(self) -> List[models.Loan]:
        return (
            self.db.query(models.Loan)
            .options(joinedload(models.Loan.user))
            .order_by(models.Loan.created_at.desc(), models.Loan.id.desc())
            .all()
        )

    def open_loans_for_user(self, user_id: int) -> List[Tuple[models.Loan, Optional[models.Book]]]:
        loans = self._open_loan_query(user_id=user_id).order_by(models.Loan.due_date.asc()).all()
        if not loans:
            return []

        book_ids = {loan.book_id for loan in loans}
        books = {
            book.id: book
            for book in self.catalog.query(models.Book).filter(models.Book.id.in_(book_ids)).all()
        }
        for loan in loans:
            if loan.book_id not in books:
                logger.warning("Loan %s references missing book %s", loan.id, loan.book_id)
        return [(loan, books.get(loan.book_id)) for loan in loans]

    def overdue_loans(self, now: Optional[datetime] = None) -> List[models.Loan]:
        now = now or models.utcnow()
        return (
            self._open_loan_query()
            .options(joinedload(models.Loan.user))
            .filter(models.Loan.due_date < now)
            .order_by(models.Loan.due_date.asc())
            .all()
        )

    def history_for_user(self, user_id: int, returned: Optional[bool] = None) -> List[models.Loan]:
        query = self.db.query(models.Loan).filter(models.Loan.user_id == user_id)
        if returned is not None:
            if returned:
                query = query.filter(models.Loan.status == models.LoanStatus.RETURNED.value)
            else:
                query = query.filter(models.Loan.status.in_(models.OPEN_STATUSES))
        return query.order_by(models.Loan.borrowed_date.desc(), models.Loan.id.desc()).all()

    def _open_loan_query(
        self,
        loan_id: Optional[int] = None,
        user_id: Optional[int] = None,
        book_id: Optional[str] = None,
    ):
        query = self.db.query(models.Loan).filter(models.Loan.status.in_(models.OPEN_STATUSES))
        if loan_id is not None:
            query = query.filter(models.Loan.id == loan_id)
        if user_id is not None:
            query = query.filter(models.Loan.user_id == user_id)
        if book_id is not None:
            query = query.filter(models.Loan.book_id == book_id)
        return query
