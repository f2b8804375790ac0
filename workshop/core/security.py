"""
Password hashing (Argon2id) and access tokens.

A token carries exactly the principal the rest of the backend works with:
``sub`` (user id), ``role`` and ``name``.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from jose import JWTError, jwt

from workshop.core.config import settings

ROLES = ("participant", "facilitator", "admin")

hasher = PasswordHasher(
    time_cost=3,
    memory_cost=64 * 1024,
    parallelism=4,
    type=Type.ID,
)

# Checked against when the email is unknown so both login paths cost the same
DUMMY_PASSWORD_HASH = hasher.hash("workshop-dummy-password")


def hash_password(password: str) -> str:
    return hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return hasher.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def password_needs_rehash(hashed_password: str) -> bool:
    """True when the stored hash predates the current Argon2 parameters."""
    try:
        return hasher.check_needs_rehash(hashed_password)
    except InvalidHashError:
        return True


def create_access_token(
    user_id: str, role: str, name: str, expires_delta: timedelta | None = None
) -> str:
    """Sign a token for a principal. Expiry defaults to ACCESS_TOKEN_EXPIRE_MINUTES."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    now = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(user_id), "role": role, "name": name, "iat": now, "exp": now + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified claims, or None for a bad signature, expiry or garbage."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
