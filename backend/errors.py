from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import sqlalchemy
from starlette.exceptions import HTTPException


class AppError(Exception):
    """An expected failure with a client-facing message and HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class BadRequest(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT


# PostgreSQL SQLSTATE codes this service knows how to explain
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"

_HINTS = {
    UNIQUE_VIOLATION: "Duplicate value violates a unique constraint.",
    FOREIGN_KEY_VIOLATION: "Foreign key violation (referenced row missing).",
    NOT_NULL_VIOLATION: "A required column is missing a default.",
    CHECK_VIOLATION: "A value violates a check constraint.",
    "42P01": "Table not found (schema mismatch).",
    "42703": "Column name mismatch. Verify column names.",
    "42501": "Permission denied. Re-check grants for the app role.",
    "42601": "SQL syntax error. Verify table/column names and quoting.",
}


def sqlstate(exc: sqlalchemy.exc.DBAPIError) -> Optional[str]:
    """SQLSTATE of the driver error, or a best-effort equivalent for SQLite."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code
    message = str(orig if orig is not None else exc).upper()
    if "UNIQUE CONSTRAINT FAILED" in message:
        return UNIQUE_VIOLATION
    if "FOREIGN KEY CONSTRAINT FAILED" in message:
        return FOREIGN_KEY_VIOLATION
    if "NOT NULL CONSTRAINT FAILED" in message:
        return NOT_NULL_VIOLATION
    if "CHECK CONSTRAINT FAILED" in message:
        return CHECK_VIOLATION
    if "NO SUCH TABLE" in message:
        return "42P01"
    if "NO SUCH COLUMN" in message:
        return "42703"
    return None


def hint_for(exc: sqlalchemy.exc.DBAPIError) -> str:
    return _HINTS.get(sqlstate(exc) or "", "Unclassified database error.")


def error_detail(exc: sqlalchemy.exc.DBAPIError) -> str:
    """Lower-cased constraint name and driver message, for telling which column collided."""
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or ""
    return f"{constraint} {orig if orig is not None else exc}".lower()


def log_db_error(where: str, exc: Exception) -> None:
    if isinstance(exc, sqlalchemy.exc.DBAPIError):
        print(f"{where} error: code={sqlstate(exc)} hint={hint_for(exc)!r} message={exc.orig}")
    else:
        print(f"{where} error: {exc!r}")


def _field_errors(exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "form", "message": err.get("msg", "Invalid value")})
    return errors


def install_handlers(app: FastAPI) -> None:
    """Every error leaves the API as a JSON body with an `error` key."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid input", "errors": _field_errors(exc)},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(sqlalchemy.exc.SQLAlchemyError)
    async def db_error_handler(request: Request, exc: sqlalchemy.exc.SQLAlchemyError):
        log_db_error(f"{request.method} {request.url.path}", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error"},
        )
