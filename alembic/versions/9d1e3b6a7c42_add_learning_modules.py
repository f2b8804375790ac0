"""add learning modules

Revision ID: 9d1e3b6a7c42
Revises: 4c2f7a91d0e3
Create Date: 2026-10-19 09:30:00.000000

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "9d1e3b6a7c42"
down_revision: str | Sequence[str] | None = "4c2f7a91d0e3"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Learning module catalog and per-participant completion."""
    op.execute("""
    CREATE TABLE IF NOT EXISTS learning_modules (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        title VARCHAR(255) NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        position INTEGER NOT NULL DEFAULT 0,
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_learning_modules_position
        ON learning_modules(position, created_at) WHERE active;

    CREATE TABLE IF NOT EXISTS module_progress (
        participant_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        module_id UUID NOT NULL REFERENCES learning_modules(id) ON DELETE CASCADE,
        completed BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (participant_id, module_id)
    );
    """)


def downgrade() -> None:
    op.execute("""
    DROP TABLE IF EXISTS module_progress;
    DROP TABLE IF EXISTS learning_modules;
    """)
