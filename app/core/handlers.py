import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException

logger = logging.getLogger(__name__)

# Location prefixes FastAPI puts in front of the offending field name
_LOCATION_PARTS = ("body", "query", "path", "form", "header")


def error_response(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    """Failure envelope shared by every handler."""
    content = {"success": False, "message": message, "error": message}
    if errors:
        content["errors"] = list(errors)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _invalid_fields(exc: RequestValidationError) -> list:
    fields = []
    for error in exc.errors():
        names = [str(part) for part in error.get("loc", ()) if part not in _LOCATION_PARTS]
        if names and names[0] not in fields:
            fields.append(names[0])
    return fields


async def app_exception_handler(request: Request, exc: AppException):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.errors)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = _invalid_fields(exc)
    logger.warning(f"⚠️ Rejected request to {request.url.path}: {fields or exc.errors()}")
    if fields:
        return error_response(400, f"Invalid or missing fields: {', '.join(fields)}", fields)
    return error_response(400, "Validation error")


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"❌ Unhandled database error on {request.url.path}: {exc}", exc_info=True)
    return error_response(500, "Database error occurred")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return error_response(
        429,
        "You have made too many requests in a short period. Please try again later.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
