"""Error taxonomy and JSON error handlers."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AnalyticsError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AnalyticsError):
    status_code = 404


class AuthError(AnalyticsError):
    status_code = 401


class StorageError(AnalyticsError):
    """A write or read against the store failed.  The message is generic;
    driver details only go to the server log."""
    status_code = 500


class QueryError(StorageError):
    pass


class DatabaseConnectionError(StorageError):
    pass


class SchemaError(StorageError):
    pass


def format_validation_errors(errors) -> str:
    """Flatten pydantic error dicts into one readable line."""
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        field = ".".join(loc)
        msg = err.get("msg", "invalid value")
        parts.append(f"{field}: {msg}" if field else msg)
    return "; ".join(parts) or "Invalid request body"


def setup_error_handlers(app: FastAPI) -> None:
    """Register handlers so every failure is returned as {"error": ...}."""

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(_request: Request, exc: AnalyticsError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": format_validation_errors(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception on %s %s", request.method, request.url.path,
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
