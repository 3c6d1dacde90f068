from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from library_api import crud, models, schemas
from library_api.auth import token_for_user
from library_api.config import settings
from library_api.database import get_catalog, get_db
from library_api.dependencies import get_current_user, get_ledger, get_staff_user
from library_api.errors import PermissionDeniedError
from library_api.ledger import LoanLedger

router = APIRouter()


# Auth


@router.post("/auth/register", response_model=schemas.Envelope[schemas.AuthPayload], status_code=status.HTTP_201_CREATED)
def register_user(user: schemas.UserCreate, db: Session = Depends(get_db)):
    new_user = crud.create_user(db, user)
    return schemas.Envelope(
        data=schemas.AuthPayload(user=schemas.UserConfig.model_validate(new_user), token=token_for_user(new_user)),
        message="Account created",
    )


@router.post("/auth/login", response_model=schemas.Envelope[schemas.AuthPayload])
def login(credentials: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, credentials.username, credentials.password)
    return schemas.Envelope(
        data=schemas.AuthPayload(user=schemas.UserConfig.model_validate(user), token=token_for_user(user)),
        message="Login successful",
    )


@router.get("/auth/me", response_model=schemas.Envelope[schemas.UserConfig])
def read_me(current_user: models.User = Depends(get_current_user)):
    return schemas.Envelope(data=current_user)


@router.get("/users/{user_id}", response_model=schemas.Envelope[schemas.UserConfig])
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    if current_user.id != user_id and not current_user.is_staff:
        raise PermissionDeniedError("You can't view another user's account.")
    return schemas.Envelope(data=crud.get_user(db, user_id))


# Books


@router.get("/books", response_model=schemas.BookListEnvelope)
def read_books(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    book_status: Optional[models.BookStatus] = Query(None, alias="status"),
    category: Optional[str] = None,
    author: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query("title", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    catalog: Session = Depends(get_catalog),
):
    books, pagination = crud.list_books(
        catalog,
        page=page,
        limit=limit,
        status=book_status.value if book_status else None,
        category=category,
        author=author,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return schemas.BookListEnvelope(data=books, pagination=pagination)


@router.get("/books/popular", response_model=schemas.Envelope[List[schemas.BookConfig]])
def read_popular_books(limit: int = Query(10, ge=1, le=100), catalog: Session = Depends(get_catalog)):
    return schemas.Envelope(data=crud.popular_books(catalog, limit))


@router.get("/books/recent", response_model=schemas.Envelope[List[schemas.BookConfig]])
def read_recent_books(limit: int = Query(10, ge=1, le=100), catalog: Session = Depends(get_catalog)):
    return schemas.Envelope(data=crud.recent_books(catalog, limit))


@router.get("/books/stats", response_model=schemas.Envelope[schemas.BookStats])
def read_book_stats(catalog: Session = Depends(get_catalog)):
    return schemas.Envelope(data=crud.book_stats(catalog))


@router.get("/books/{book_id}", response_model=schemas.Envelope[schemas.BookConfig])
def read_book(book_id: str, catalog: Session = Depends(get_catalog)):
    return schemas.Envelope(data=crud.get_book(catalog, book_id))


@router.post("/books", response_model=schemas.Envelope[schemas.BookConfig], status_code=status.HTTP_201_CREATED)
def create_book(
    book: schemas.BookCreate,
    catalog: Session = Depends(get_catalog),
    current_user: models.User = Depends(get_staff_user),
):
    new_book = crud.create_book(catalog, book, librarian=str(current_user.id))
    return schemas.Envelope(data=new_book, message=f'Book "{new_book.title}" added')


@router.put("/books/{book_id}", response_model=schemas.Envelope[schemas.BookConfig])
def update_book(
    book_id: str,
    book_data: schemas.BookUpdate,
    catalog: Session = Depends(get_catalog),
    current_user: models.User = Depends(get_staff_user),
):
    return schemas.Envelope(data=crud.update_book(catalog, book_id, book_data), message="Book updated")


@router.delete("/books/{book_id}", response_model=schemas.Envelope[schemas.BookSummary])
def delete_book(
    book_id: str,
    catalog: Session = Depends(get_catalog),
    current_user: models.User = Depends(get_staff_user),
):
    book = crud.delete_book(catalog, book_id)
    return schemas.Envelope(data=book.short_info(), message=f'Book "{book.title}" deleted')


# Loans


@router.post("/loans", response_model=schemas.Envelope[schemas.BorrowResult], status_code=status.HTTP_201_CREATED)
def borrow_book(loan: schemas.LoanCreate, ledger: LoanLedger = Depends(get_ledger)):
    new_loan, book = ledger.borrow(loan.user_id, loan.book_id)
    return schemas.Envelope(
        data=schemas.BorrowResult(loan=schemas.LoanConfig.model_validate(new_loan), book=book.short_info()),
        message="Book borrowed",
    )


@router.get("/loans", response_model=schemas.Envelope[List[schemas.LoanWithUser]])
def read_all_loans(ledger: LoanLedger = Depends(get_ledger)):
    return schemas.Envelope(data=ledger.list_loans())


@router.get("/loans/overdue", response_model=schemas.Envelope[List[schemas.LoanWithUser]])
def read_overdue_loans(
    ledger: LoanLedger = Depends(get_ledger),
    current_user: models.User = Depends(get_staff_user),
):
    return schemas.Envelope(data=ledger.overdue_loans())


@router.get("/loans/me", response_model=schemas.Envelope[List[schemas.LoanConfig]])
def read_my_loans(
    returned: Optional[bool] = None,
    ledger: LoanLedger = Depends(get_ledger),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.Envelope(data=ledger.history_for_user(current_user.id, returned))


@router.get("/loans/me/export")
def export_my_loans_csv(
    ledger: LoanLedger = Depends(get_ledger),
    current_user: models.User = Depends(get_current_user),
):
    content = crud.generate_loans_csv(ledger.history_for_user(current_user.id))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=loan_history.csv"},
    )


@router.get("/loans/me/export/pdf")
def export_my_loans_pdf(
    ledger: LoanLedger = Depends(get_ledger),
    current_user: models.User = Depends(get_current_user),
):
    content = crud.generate_loans_pdf(ledger.history_for_user(current_user.id), current_user)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": "attachment; filename=loan_history.pdf"},
    )


@router.get("/loans/user/{user_id}", response_model=schemas.Envelope[List[schemas.UserLoan]])
def read_user_loans(user_id: int, ledger: LoanLedger = Depends(get_ledger)):
    data = [
        schemas.UserLoan(
            id=loan.id,
            title=loan.book_title,
            author=loan.book_author,
            isbn=loan.book_isbn,
            status=loan.status,
            borrowed_date=loan.borrowed_date,
            due_date=loan.due_date,
            renewal_count=loan.renewal_count,
            max_renewals=loan.max_renewals,
            is_overdue=loan.is_overdue,
            book=book.short_info() if book else None,
        )
        for loan, book in ledger.open_loans_for_user(user_id)
    ]
    return schemas.Envelope(data=data)


@router.patch("/loans/{loan_id}/return", response_model=schemas.Envelope[schemas.LoanConfig])
def return_loan(loan_id: int, body: schemas.LoanAction, ledger: LoanLedger = Depends(get_ledger)):
    return schemas.Envelope(data=ledger.return_loan(loan_id, body.user_id), message="Book returned")


@router.patch("/loans/{loan_id}/renew", response_model=schemas.Envelope[schemas.LoanConfig])
def renew_loan(loan_id: int, body: schemas.LoanAction, ledger: LoanLedger = Depends(get_ledger)):
    return schemas.Envelope(data=ledger.renew(loan_id, body.user_id), message="Loan renewed")


@router.patch("/loans/book/{book_id}/return", response_model=schemas.Envelope[schemas.LoanConfig])
def return_book(
    book_id: str,
    ledger: LoanLedger = Depends(get_ledger),
    current_user: models.User = Depends(get_staff_user),
):
    return schemas.Envelope(data=ledger.return_book(book_id), message="Book returned")


# Admin


@router.get("/admin/stats", response_model=schemas.Envelope[schemas.AdminStats])
def read_admin_stats(
    db: Session = Depends(get_db),
    catalog: Session = Depends(get_catalog),
    current_user: models.User = Depends(get_staff_user),
):
    return schemas.Envelope(data=crud.get_admin_dashboard_stats(db, catalog))
