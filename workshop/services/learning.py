"""
Learning modules and the participant's progress through a session's gates.

The module catalog is shared by every session. Completing modules drives the
overall percentage, which is copied onto the enrollment's training progress
when the participant names the session they are preparing for.
"""

from typing import Any
from uuid import UUID

import asyncpg

from workshop.core.exceptions import NotFoundError, ValidationError
from workshop.core.logging_config import get_logger
from workshop.core.validation import sanitize_string
from workshop.services.enrollments import get_enrollment, is_admitted, update_training_progress
from workshop.services.quiz import get_latest_result, round_score
from workshop.services.sessions import is_terminal
from workshop.services.voting import has_voted

logger = get_logger(__name__)

MODULE_COLUMNS = "id, title, summary, content, position, active, created_at"


def summarize_progress(completed: int, total: int) -> dict[str, Any]:
    """Completed/total counts and the percentage rounded half up."""
    percentage = float(round_score(completed * 100 / total)) if total else 0.0
    return {"total": total, "completed": completed, "percentage": percentage}


def next_step(
    session_state: str,
    enrollment: dict[str, Any] | None,
    learning_percentage: float,
    modules_total: int,
) -> str:
    """
    Where the participant stands: join, learning, quiz, voting, done or closed.

    Learning only holds a participant back when the catalog has modules.
    """
    if enrollment and enrollment.get("voting_completed"):
        return "done"
    if is_terminal(session_state):
        return "closed"
    if not is_admitted(enrollment):
        return "join"
    if modules_total and learning_percentage < 100:
        return "learning"
    if not enrollment["quiz_passed"]:
        return "quiz"
    return "voting"


# ============================================
# CATALOG
# ============================================


async def create_module(
    conn: asyncpg.Connection,
    title: str,
    summary: str = "",
    content: str = "",
    position: int | None = None,
) -> dict[str, Any]:
    """Add a module. Without a position it goes after the last active one."""
    title = sanitize_string(title, max_length=255)
    if not title:
        raise ValidationError("Module title is required", {"field": "title"})

    if position is None:
        position = await conn.fetchval(
            "SELECT COALESCE(MAX(position), 0) + 1 FROM learning_modules WHERE active"
        )

    row = await conn.fetchrow(
        f"""
        INSERT INTO learning_modules (title, summary, content, position)
        VALUES ($1, $2, $3, $4)
        RETURNING {MODULE_COLUMNS}
        """,
        title,
        sanitize_string(summary, max_length=2000),
        content or "",
        position,
    )
    logger.info(f"Learning module created: {title}")
    return _parse_module_row(row)


async def list_modules(conn: asyncpg.Connection, participant_id: UUID) -> dict[str, Any]:
    """Active modules in order, each flagged with the participant's completion."""
    rows = await conn.fetch(
        """
        SELECT m.id, m.title, m.summary, m.content, m.position, m.active, m.created_at,
               COALESCE(p.completed, FALSE) AS completed,
               p.updated_at AS completed_at
        FROM learning_modules m
        LEFT JOIN module_progress p
          ON p.module_id = m.id AND p.participant_id = $1
        WHERE m.active
        ORDER BY m.position, m.created_at
        """,
        str(participant_id),
    )
    modules = [_parse_module_row(row) for row in rows]
    for module in modules:
        if not module["completed"]:
            module["completed_at"] = None

    done = sum(1 for m in modules if m["completed"])
    return {"modules": modules, "progress": summarize_progress(done, len(modules))}


async def get_module_summary(conn: asyncpg.Connection, participant_id: UUID) -> dict[str, Any]:
    row = await conn.fetchrow(
        """
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE p.completed) AS completed
        FROM learning_modules m
        LEFT JOIN module_progress p
          ON p.module_id = m.id AND p.participant_id = $1
        WHERE m.active
        """,
        str(participant_id),
    )
    return summarize_progress(row["completed"] or 0, row["total"] or 0)


# ============================================
# PROGRESS
# ============================================


async def set_module_progress(
    conn: asyncpg.Connection,
    participant_id: UUID,
    module_id: UUID,
    completed: bool = True,
    session_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Mark a module done (or not done) for a participant.

    With ``session_id`` the new overall percentage is also recorded as the
    enrollment's training progress, in the same transaction.
    """
    async with conn.transaction():
        exists = await conn.fetchval(
            "SELECT 1 FROM learning_modules WHERE id = $1 AND active", str(module_id)
        )
        if not exists:
            raise NotFoundError("Learning module not found", {"module_id": str(module_id)})

        await conn.execute(
            """
            INSERT INTO module_progress (participant_id, module_id, completed)
            VALUES ($1, $2, $3)
            ON CONFLICT (participant_id, module_id)
            DO UPDATE SET completed = EXCLUDED.completed, updated_at = CURRENT_TIMESTAMP
            """,
            str(participant_id),
            str(module_id),
            completed,
        )

        summary = await get_module_summary(conn, participant_id)
        enrollment = None
        if session_id is not None:
            enrollment = await update_training_progress(
                conn, session_id, participant_id, summary["percentage"]
            )

    logger.info(
        f"Module {module_id} {'completed' if completed else 'reopened'} by {participant_id}",
        extra={
            "extra_fields": {
                "event_type": "module_progress",
                "participant_id": str(participant_id),
                "module_id": str(module_id),
                "completed": completed,
                "percentage": summary["percentage"],
            }
        },
    )

    return {
        "module_id": str(module_id),
        "completed": completed,
        "progress": summary,
        "enrollment": enrollment,
    }


async def get_participant_status(
    conn: asyncpg.Connection, session_id: UUID, participant_id: UUID
) -> dict[str, Any]:
    """Everything a participant's client needs to decide which screen comes next."""
    session = await conn.fetchrow(
        "SELECT id, title, state FROM sessions WHERE id = $1", str(session_id)
    )
    if not session:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})

    enrollment = await get_enrollment(conn, session_id, participant_id)
    modules = await get_module_summary(conn, participant_id)
    latest = await get_latest_result(conn, participant_id, session_id)
    voted = await has_voted(conn, session_id, participant_id)

    training = enrollment["training_progress"] if enrollment else 0.0
    learning = max(training or 0.0, modules["percentage"])

    return {
        "session": {
            "id": str(session["id"]),
            "title": session["title"],
            "state": session["state"],
        },
        "enrolled": is_admitted(enrollment),
        "enrollment_status": enrollment["status"] if enrollment else None,
        "training_progress": training,
        "modules": modules,
        "quiz": {
            "completed": bool(enrollment and enrollment["quiz_completed"]),
            "passed": bool(enrollment and enrollment["quiz_passed"]),
            "latest": latest,
        },
        "voting_completed": bool(enrollment and enrollment["voting_completed"]),
        "has_voted": voted,
        "next_step": next_step(session["state"], enrollment, learning, modules["total"]),
    }


def _parse_module_row(row: asyncpg.Record) -> dict[str, Any]:
    result = dict(row)
    result["id"] = str(result["id"])
    return result
