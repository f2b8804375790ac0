"""initial_workshop_schema

Revision ID: 4c2f7a91d0e3
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c2f7a91d0e3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create identity, session, enrollment, quiz and voting tables."""
    op.execute("""
    CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

    -- ============================================
    -- USERS - identity store
    -- ============================================
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        name VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role VARCHAR(20) NOT NULL DEFAULT 'participant'
            CHECK (role IN ('admin', 'facilitator', 'participant')),
        phone VARCHAR(50),
        organization VARCHAR(255),
        province VARCHAR(100),
        district VARCHAR(100),
        last_active_at TIMESTAMP WITH TIME ZONE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    -- ============================================
    -- SESSIONS - workshop instances
    -- ============================================
    CREATE TABLE IF NOT EXISTS sessions (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        title VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        scheduled_date DATE NOT NULL,
        scheduled_time TIME NOT NULL DEFAULT '10:00',
        duration_hours INTEGER NOT NULL DEFAULT 2 CHECK (duration_hours > 0),
        province VARCHAR(100),
        district VARCHAR(100),
        location VARCHAR(255),
        virtual_link VARCHAR(500),
        notes TEXT,
        facilitator_id UUID NOT NULL REFERENCES users(id),
        expected_participants INTEGER NOT NULL DEFAULT 20,
        kind VARCHAR(20) NOT NULL DEFAULT 'in_person'
            CHECK (kind IN ('in_person', 'virtual', 'hybrid')),
        state VARCHAR(20) NOT NULL DEFAULT 'scheduled'
            CHECK (state IN ('scheduled', 'in_progress', 'concluded', 'cancelled')),
        join_pin VARCHAR(12) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    -- PINs are unique only among sessions that can still be joined
    CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_active_pin
        ON sessions(join_pin)
        WHERE state NOT IN ('concluded', 'cancelled');
    CREATE INDEX IF NOT EXISTS idx_sessions_schedule ON sessions(scheduled_date DESC, scheduled_time DESC);
    CREATE INDEX IF NOT EXISTS idx_sessions_location ON sessions(province, district);
    CREATE INDEX IF NOT EXISTS idx_sessions_facilitator ON sessions(facilitator_id);

    -- ============================================
    -- CANDIDATE ACTIVITIES
    -- ============================================
    CREATE TABLE IF NOT EXISTS candidate_activities (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        session_id UUID NOT NULL REFERENCES sessions(id),
        position INTEGER NOT NULL,
        strategic_objective TEXT NOT NULL,
        activity TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        criteria JSONB NOT NULL DEFAULT '{}',
        priority_tier VARCHAR(50),
        time_to_impact VARCHAR(50),
        capex_tier VARCHAR(50),
        maladaptation_risk VARCHAR(50),
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT criteria_is_object CHECK (jsonb_typeof(criteria) = 'object')
    );

    CREATE INDEX IF NOT EXISTS idx_activities_session ON candidate_activities(session_id, position);

    -- ============================================
    -- ENROLLMENTS - participant membership and gating flags
    -- ============================================
    CREATE TABLE IF NOT EXISTS enrollments (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        session_id UUID NOT NULL REFERENCES sessions(id),
        participant_id UUID NOT NULL REFERENCES users(id),
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'confirmed', 'cancelled')),
        joined_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        training_progress NUMERIC(5, 2) NOT NULL DEFAULT 0
            CHECK (training_progress BETWEEN 0 AND 100),
        quiz_completed BOOLEAN NOT NULL DEFAULT FALSE,
        quiz_passed BOOLEAN NOT NULL DEFAULT FALSE,
        voting_completed BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT uq_enrollment_session_participant UNIQUE (session_id, participant_id)
    );

    CREATE INDEX IF NOT EXISTS idx_enrollments_participant ON enrollments(participant_id);

    -- ============================================
    -- QUIZ QUESTIONS - session_id NULL means module-scoped bank question
    -- ============================================
    CREATE TABLE IF NOT EXISTS quiz_questions (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        session_id UUID REFERENCES sessions(id),
        question TEXT NOT NULL,
        options JSONB NOT NULL DEFAULT '{}',
        correct_answer VARCHAR(20) NOT NULL,
        module VARCHAR(100) NOT NULL DEFAULT 'General',
        difficulty VARCHAR(20) NOT NULL DEFAULT 'medium',
        explanation TEXT,
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_questions_session ON quiz_questions(session_id) WHERE active = TRUE;

    -- ============================================
    -- QUIZ RESULTS - one row per attempt
    -- ============================================
    CREATE TABLE IF NOT EXISTS quiz_results (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        participant_id UUID NOT NULL REFERENCES users(id),
        session_id UUID REFERENCES sessions(id) ON DELETE SET NULL,
        score DOUBLE PRECISION NOT NULL CHECK (score BETWEEN 0 AND 100),
        passed BOOLEAN NOT NULL,
        total_questions INTEGER NOT NULL CHECK (total_questions > 0),
        correct_answers INTEGER NOT NULL CHECK (correct_answers >= 0),
        details JSONB NOT NULL DEFAULT '[]',
        completed_at TIMESTAMP WITH TIME ZONE DEFAULT clock_timestamp()
    );

    CREATE INDEX IF NOT EXISTS idx_quiz_results_participant
        ON quiz_results(participant_id, completed_at DESC);

    -- ============================================
    -- VOTES - one row per (participant, activity, session)
    -- ============================================
    CREATE TABLE IF NOT EXISTS votes (
        id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
        participant_id UUID NOT NULL REFERENCES users(id),
        activity_id UUID NOT NULL REFERENCES candidate_activities(id),
        session_id UUID NOT NULL REFERENCES sessions(id),
        score INTEGER NOT NULL,
        priority INTEGER NOT NULL,
        comment TEXT,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT uq_vote_identity UNIQUE (participant_id, activity_id, session_id)
    );

    CREATE INDEX IF NOT EXISTS idx_votes_session_activity ON votes(session_id, activity_id);
    """)


def downgrade() -> None:
    """Drop workshop tables."""
    op.execute("""
    DROP TABLE IF EXISTS votes;
    DROP TABLE IF EXISTS quiz_results;
    DROP TABLE IF EXISTS quiz_questions;
    DROP TABLE IF EXISTS enrollments;
    DROP TABLE IF EXISTS candidate_activities;
    DROP TABLE IF EXISTS sessions;
    DROP TABLE IF EXISTS users;
    """)
