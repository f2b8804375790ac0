"""Identity store lookups used by authentication and the session core."""

from typing import Any
from uuid import UUID

import asyncpg

from workshop.core.database import affected_rows
from workshop.core.exceptions import ValidationError
from workshop.core.logging_config import get_logger
from workshop.core.security import ROLES

logger = get_logger(__name__)

PUBLIC_COLUMNS = """
    id, name, email, role, phone, organization, province, district,
    last_active_at, created_at
"""


async def create_user(
    conn: asyncpg.Connection,
    name: str,
    email: str,
    password_hash: str,
    role: str = "participant",
    organization: str | None = None,
    phone: str | None = None,
    province: str | None = None,
    district: str | None = None,
) -> dict[str, Any]:
    """Create a new user. Emails are stored lower-case."""
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}", {"field": "role"})
    result = await conn.fetchrow(
        f"""
        INSERT INTO users (
            name, email, password_hash, role, organization, phone, province, district
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING {PUBLIC_COLUMNS}
        """,
        name,
        email.strip().lower(),
        password_hash,
        role,
        organization,
        phone,
        province,
        district,
    )
    return _parse_user_row(result)


async def get_user_by_id(
    conn: asyncpg.Connection, user_id: UUID
) -> dict[str, Any] | None:
    """Get user by ID (without password hash)."""
    result = await conn.fetchrow(
        f"SELECT {PUBLIC_COLUMNS} FROM users WHERE id = $1",
        str(user_id),
    )
    return _parse_user_row(result)


async def get_user_by_email(
    conn: asyncpg.Connection, email: str
) -> dict[str, Any] | None:
    """Get user by email, including the password hash for credential checks."""
    result = await conn.fetchrow(
        f"SELECT {PUBLIC_COLUMNS}, password_hash FROM users WHERE email = $1",
        email.strip().lower(),
    )
    return _parse_user_row(result)


async def touch_last_active(conn: asyncpg.Connection, user_id: UUID) -> bool:
    """Update last_active_at for a user."""
    result = await conn.execute(
        "UPDATE users SET last_active_at = CURRENT_TIMESTAMP WHERE id = $1",
        str(user_id),
    )
    return affected_rows(result) > 0


async def update_password_hash(
    conn: asyncpg.Connection, user_id: UUID, password_hash: str
) -> None:
    await conn.execute(
        "UPDATE users SET password_hash = $2 WHERE id = $1", str(user_id), password_hash
    )
    logger.info(f"Password hash upgraded for user {user_id}")


def _parse_user_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    """Parse a user row into a dict with a string id."""
    if not row:
        return None
    result = dict(row)
    result["id"] = str(result["id"])
    return result
