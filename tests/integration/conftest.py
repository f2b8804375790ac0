"""
Fixtures for tests that run the services against PostgreSQL.

The schema is created with ``alembic upgrade head``. Every test starts from
empty tables. When TEST_DATABASE_URL cannot be reached the tests are skipped.
"""

import os
from pathlib import Path
from uuid import uuid4

import asyncpg
import psycopg2
import pytest
from alembic import command
from alembic.config import Config

from workshop.services.users import create_user

ROOT = Path(__file__).resolve().parents[2]

TABLES = (
    "votes, quiz_results, quiz_questions, enrollments, candidate_activities, sessions, "
    "module_progress, learning_modules, users"
)


@pytest.fixture(scope="session")
def database_url() -> str:
    """Reachable, migrated test database URL."""
    url = os.environ["DATABASE_URL"]
    try:
        psycopg2.connect(url, connect_timeout=3).close()
    except psycopg2.OperationalError as e:
        pytest.skip(f"PostgreSQL not reachable at TEST_DATABASE_URL: {e}")

    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    command.upgrade(config, "head")
    return url


@pytest.fixture
async def db(database_url):
    """A connection to an emptied database."""
    conn = await asyncpg.connect(database_url)
    await conn.execute(f"TRUNCATE {TABLES} CASCADE")
    yield conn
    await conn.close()


@pytest.fixture
def make_user(db):
    """Factory creating users with unique emails."""

    async def _make(role: str = "participant", name: str | None = None) -> dict:
        return await create_user(
            db,
            name=name or f"{role.title()} {uuid4().hex[:6]}",
            email=f"{role}_{uuid4().hex[:8]}@example.org",
            password_hash="not-a-real-hash",
            role=role,
        )

    return _make
