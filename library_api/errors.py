import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Base class for business-rule failures reported to the client."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LibraryError):
    status_code = status.HTTP_409_CONFLICT


class RenewalNotAllowedError(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(LibraryError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(LibraryError):
    status_code = status.HTTP_403_FORBIDDEN


def error_body(error: str, details: Optional[list] = None) -> dict:
    body = {"success": False, "error": error}
    if details:
        body["details"] = details
    return body


async def library_error_handler(request: Request, exc: LibraryError):
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.message, exc.details)),
        headers=headers,
    )


async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        details.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Invalid request data", details),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
