"""Response envelope shared by every endpoint."""

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(data: Any = None, message: str | None = None) -> dict[str, Any]:
    return {"success": True, "data": data, "message": message}


def error_response(
    status_code: int,
    message: str,
    errors: Any = None,
    data: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """
    Build a failed envelope as a response object.

    Used from exception handlers, where returning a plain dict is not an
    option. ``jsonable_encoder`` takes care of UUIDs, dates and Decimals
    coming straight out of asyncpg records.
    """
    body = {"success": False, "message": message, "data": data, "errors": errors}
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(body), headers=headers
    )


def envelope_response(
    envelope: dict[str, Any], status_code: int, headers: dict[str, str] | None = None
) -> JSONResponse:
    """Send an envelope that was already assembled (e.g. ``WorkshopError.to_dict()``)."""
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(envelope), headers=headers
    )


def paginated_response(
    items: list,
    page: int,
    limit: int,
    total: int,
    message: str | None = None,
) -> dict[str, Any]:
    pages = -(-total // limit) if limit else 0
    return {
        "success": True,
        "data": {
            "data": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": pages,
                "has_next": page < pages,
            },
        },
        "message": message,
    }
