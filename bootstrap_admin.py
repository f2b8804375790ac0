#!/usr/bin/env python3
"""
Admin User Bootstrap Script

Creates the first admin (or any facilitator/participant) account directly in
the database. Run this after `alembic upgrade head`.

Usage:
    python bootstrap_admin.py --email admin@example.org --name "Admin" --password '...'
    python bootstrap_admin.py --email ana@example.org --name "Ana" --password '...' --role facilitator
"""

import argparse
import asyncio
import sys

import asyncpg

from workshop.core.config import get_settings
from workshop.core.security import ROLES, hash_password
from workshop.services.users import create_user, get_user_by_email


async def bootstrap_user(email: str, name: str, password: str, role: str) -> bool:
    """Create the user unless the email is already registered."""
    settings = get_settings()
    conn = await asyncpg.connect(settings.DATABASE_URL)

    try:
        existing = await get_user_by_email(conn, email)
        if existing:
            print(f"ℹ️  {email} already exists with role {existing['role']}")
            return True

        user = await create_user(
            conn,
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
        )
        print(f"✅ Created {role} {user['email']} (ID: {user['id']})")
        return True

    except asyncpg.exceptions.PostgresError as e:
        print(f"❌ Error during bootstrap: {e}")
        return False

    finally:
        await conn.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the first workshop user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", choices=ROLES, default="admin")
    args = parser.parse_args()

    if len(args.password) < 8:
        print("❌ Password must be at least 8 characters")
        return 1

    ok = asyncio.run(bootstrap_user(args.email, args.name, args.password, args.role))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
