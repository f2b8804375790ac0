"""Authentication routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from workshop.api.deps import CurrentUser
from workshop.core.database import get_db
from workshop.core.logging_config import audit_logger, get_logger
from workshop.core.responses import success_response
from workshop.core.security import (
    DUMMY_PASSWORD_HASH,
    create_access_token,
    hash_password,
    password_needs_rehash,
    verify_password,
)
from workshop.services.users import get_user_by_email, update_password_hash

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger(__name__)


class LoginRequest(BaseModel):
    """Login request."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


@router.post("/login")
async def login(
    request: LoginRequest,
    http_request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Authenticate with email and password and return a bearer token.

    **Response:**
    ```json
    {
        "success": true,
        "data": {
            "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
            "token_type": "bearer",
            "user": {"id": "...", "name": "Ana", "role": "participant"}
        }
    }
    ```
    """
    client_ip = http_request.client.host if http_request.client else None

    user = await get_user_by_email(conn, request.email)

    # Always verify so unknown emails take as long as wrong passwords
    password_hash = user["password_hash"] if user else DUMMY_PASSWORD_HASH
    password_valid = verify_password(request.password, password_hash)

    if not (user and password_valid):
        reason = "unknown_email" if not user else "invalid_password"
        audit_logger.log_login_attempt(
            email=request.email, success=False, ip_address=client_ip, reason=reason
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if password_needs_rehash(password_hash):
        await update_password_hash(conn, user["id"], hash_password(request.password))

    access_token = create_access_token(user["id"], user["role"], user["name"])

    audit_logger.log_login_attempt(
        email=request.email, success=True, ip_address=client_ip
    )
    audit_logger.log_token_creation(user["id"], user["role"])

    user_data = {k: v for k, v in user.items() if k != "password_hash"}
    return success_response(
        data={"access_token": access_token, "token_type": "bearer", "user": user_data}
    )


@router.get("/me")
async def me(current_user: CurrentUser):
    """Return the authenticated user."""
    return success_response(data=current_user)
