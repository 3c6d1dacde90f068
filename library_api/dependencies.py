from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from library_api import models
from library_api.auth import decode_access_token
from library_api.database import get_catalog, get_db
from library_api.errors import AuthenticationError, PermissionDeniedError
from library_api.ledger import LoanLedger

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    payload = decode_access_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token")

    user = db.get(models.User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found")
    return user


def get_staff_user(current_user: models.User = Depends(get_current_user)) -> models.User:
    if not current_user.is_staff:
        raise PermissionDeniedError("Librarian or administrator access required.")
    return current_user


def get_ledger(
    db: Session = Depends(get_db),
    catalog: Session = Depends(get_catalog),
) -> LoanLedger:
    return LoanLedger(db, catalog)
