# app/api/errors.py
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.domain.exceptions import (
    CartError,
    CartItemNotFoundError,
    CartNotFoundError,
    ConcurrencyConflictError,
    DuplicateArticleError,
    ForbiddenRoleError,
    InvalidCredentialError,
    InvalidOperationError,
    InvalidParameterError,
    StorageError,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

# kolejnosc ma znaczenie: pierwsze dopasowanie po isinstance
STATUS_BY_ERROR = (
    (InvalidParameterError, 400),
    (InvalidCredentialError, 401),
    (ForbiddenRoleError, 403),
    (CartNotFoundError, 404),
    (CartItemNotFoundError, 404),
    (DuplicateArticleError, 409),
    (ConcurrencyConflictError, 409),
    (InvalidOperationError, 422),
    (StorageError, 503),
)


def status_for(exc: CartError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _body(message: str, error: str) -> dict:
    return {
        "message": message,
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def cart_error_handler(request: Request, exc: CartError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=_body(exc.message, type(exc).__name__),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}"
        for e in errors
    )
    return JSONResponse(status_code=400, content=_body(message, "InvalidParameterError"))


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(CartError, cart_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
