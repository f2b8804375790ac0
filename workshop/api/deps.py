"""API dependencies for authentication and authorization."""

from typing import Annotated, Callable
from uuid import UUID

import asyncpg
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from workshop.core.database import get_db
from workshop.core.logging_config import audit_logger
from workshop.core.security import decode_access_token
from workshop.services.users import get_user_by_id

security = HTTPBearer()


def _unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict:
    """
    Dependency to get the current authenticated user.

    Validates the JWT and resolves its subject against the identity store.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()

    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized()

    try:
        uid = UUID(user_id)
    except ValueError:
        raise _unauthorized() from None

    user = await get_user_by_id(conn, uid)
    if user is None:
        raise _unauthorized("User not found")

    return user


CurrentUser = Annotated[dict, Depends(get_current_user)]


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory restricting a route to the given roles.

    Usage:
        @router.post("", dependencies=[Depends(require_roles("admin"))])
    """

    def checker(request: Request, current_user: CurrentUser) -> dict:
        if current_user.get("role") not in roles:
            audit_logger.log_role_denied(
                resource=request.url.path,
                user_id=current_user.get("id"),
                role=current_user.get("role"),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires one of the roles: {', '.join(roles)}",
            )
        return current_user

    return checker


require_admin = require_roles("admin")
require_facilitator = require_roles("facilitator", "admin")
require_participant = require_roles("participant")
