"""Exception handlers translating failures into the error envelope."""

import asyncpg
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from workshop.core.config import settings
from workshop.core.exceptions import TransientStoreError, WorkshopError
from workshop.core.logging_config import get_logger
from workshop.core.responses import envelope_response, error_response

logger = get_logger(__name__)


async def handle_workshop_error(request: Request, exc: WorkshopError):
    if isinstance(exc, TransientStoreError):
        logger.warning(f"Datastore unavailable while serving {request.url.path}")
    elif exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.debug(f"{exc.code} on {request.url.path}: {exc.message}")
    return envelope_response(exc.to_dict(), exc.status_code)


async def handle_http_exception(request: Request, exc: HTTPException):
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return envelope_response(exc.detail, exc.status_code, headers)
    return error_response(exc.status_code, str(exc.detail), headers=headers)


async def handle_request_validation(request: Request, exc: RequestValidationError):
    """Report each bad field as ``location.path: message``."""
    errors = {
        ".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()
    }
    return error_response(422, "Validation failed", errors=errors)


async def handle_postgres_error(request: Request, exc: asyncpg.exceptions.PostgresError):
    logger.error(f"Unhandled database error on {request.url.path}: {exc!r}", exc_info=True)
    errors = {"code": "DATABASE_ERROR"}
    if settings.ENVIRONMENT == "development":
        errors["detail"] = str(exc)
    return error_response(500, "Database error occurred", errors=errors)


async def handle_unexpected(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc!r}", exc_info=True)
    return error_response(500, "An unexpected error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkshopError, handle_workshop_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(asyncpg.exceptions.PostgresError, handle_postgres_error)
    app.add_exception_handler(Exception, handle_unexpected)
