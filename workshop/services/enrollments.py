"""Enrollment manager: participant membership in sessions."""

from typing import Any
from uuid import UUID

import asyncpg

from workshop.core.database import affected_rows
from workshop.core.exceptions import ConflictError, NotFoundError, ValidationError
from workshop.core.logging_config import audit_logger, get_logger
from workshop.core.validation import clamp_percentage
from workshop.utils.pins import normalize_pin

logger = get_logger(__name__)

ENROLLMENT_STATUSES = ("pending", "confirmed", "cancelled")

ENROLLMENT_COLUMNS = """
    id, session_id, participant_id, status, joined_at, training_progress,
    quiz_completed, quiz_passed, voting_completed, updated_at
"""


async def join_by_pin(
    conn: asyncpg.Connection, pin: str, participant_id: UUID
) -> dict[str, Any]:
    """
    Enroll a participant through a session's join PIN.

    The PIN is matched case-insensitively among sessions that are not
    concluded or cancelled. Rejoining re-confirms the existing enrollment.
    """
    normalized = normalize_pin(pin)
    if not normalized:
        raise ValidationError("PIN is required", {"field": "pin"})

    session = await conn.fetchrow(
        """
        SELECT id, title, state, scheduled_date, scheduled_time, kind
        FROM sessions
        WHERE join_pin = $1 AND state NOT IN ('concluded', 'cancelled')
        """,
        normalized,
    )
    if not session:
        audit_logger.log_join_refused(str(participant_id), normalized, "no_open_session")
        raise NotFoundError("Invalid or closed PIN")

    result = await conn.fetchrow(
        f"""
        INSERT INTO enrollments (session_id, participant_id, status)
        VALUES ($1, $2, 'confirmed')
        ON CONFLICT (session_id, participant_id)
        DO UPDATE SET status = 'confirmed', updated_at = CURRENT_TIMESTAMP
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        session["id"],
        str(participant_id),
    )

    logger.info(
        f"Participant {participant_id} joined session {session['id']}",
        extra={
            "extra_fields": {
                "event_type": "session_joined",
                "session_id": str(session["id"]),
                "participant_id": str(participant_id),
            }
        },
    )

    enrollment = _parse_enrollment_row(result)
    enrollment["session"] = {
        "id": str(session["id"]),
        "title": session["title"],
        "state": session["state"],
        "scheduled_date": session["scheduled_date"],
        "scheduled_time": session["scheduled_time"],
        "kind": session["kind"],
    }
    return enrollment


async def update_training_progress(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    percentage: float,
) -> dict[str, Any]:
    """Record learning-module progress, clamped to [0, 100]."""
    progress = clamp_percentage(percentage)

    exists = await conn.fetchval("SELECT 1 FROM sessions WHERE id = $1", str(session_id))
    if not exists:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})

    result = await conn.fetchrow(
        f"""
        INSERT INTO enrollments (session_id, participant_id, status, training_progress)
        VALUES ($1, $2, 'pending', $3)
        ON CONFLICT (session_id, participant_id)
        DO UPDATE SET training_progress = EXCLUDED.training_progress,
                      updated_at = CURRENT_TIMESTAMP
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        str(session_id),
        str(participant_id),
        progress,
    )
    return _parse_enrollment_row(result)


async def list_participants(
    conn: asyncpg.Connection,
    session_id: UUID,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """List a session's enrollments joined with participant identity."""
    where = " WHERE e.session_id = $1"
    params: list[Any] = [str(session_id)]

    if status:
        params.append(status)
        where += f" AND e.status = ${len(params)}"

    total = await conn.fetchval(f"SELECT COUNT(*) FROM enrollments e{where}", *params)

    query = f"""
        SELECT e.id, e.session_id, e.participant_id, e.status, e.joined_at,
               e.training_progress, e.quiz_completed, e.quiz_passed,
               e.voting_completed, e.updated_at,
               u.name, u.email, u.phone, u.organization, u.province, u.district
        FROM enrollments e
        JOIN users u ON e.participant_id = u.id
        {where}
        ORDER BY e.joined_at ASC, u.name ASC
    """
    params.append(limit)
    query += f" LIMIT ${len(params)}"
    params.append(offset)
    query += f" OFFSET ${len(params)}"

    rows = await conn.fetch(query, *params)
    return [_parse_enrollment_row(row) for row in rows], total or 0


async def get_enrollment(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """
    Get one enrollment, or None if the participant is not enrolled.

    ``for_update`` locks the row until the surrounding transaction ends so the
    gating flags cannot change under a caller that acts on them.
    """
    lock = " FOR UPDATE" if for_update else ""
    result = await conn.fetchrow(
        f"""
        SELECT {ENROLLMENT_COLUMNS}
        FROM enrollments
        WHERE session_id = $1 AND participant_id = $2{lock}
        """,
        str(session_id),
        str(participant_id),
    )
    return _parse_enrollment_row(result) if result else None


async def add_participant(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    status: str = "confirmed",
) -> dict[str, Any]:
    """Enroll a participant on a facilitator's behalf."""
    _check_status(status)

    session_exists = await conn.fetchval(
        "SELECT 1 FROM sessions WHERE id = $1", str(session_id)
    )
    if not session_exists:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})

    user_exists = await conn.fetchval(
        "SELECT 1 FROM users WHERE id = $1", str(participant_id)
    )
    if not user_exists:
        raise NotFoundError("User not found", {"participant_id": str(participant_id)})

    result = await conn.fetchrow(
        f"""
        INSERT INTO enrollments (session_id, participant_id, status)
        VALUES ($1, $2, $3)
        ON CONFLICT (session_id, participant_id) DO NOTHING
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        str(session_id),
        str(participant_id),
        status,
    )
    if not result:
        raise ConflictError(
            "Participant is already enrolled in this session",
            {"session_id": str(session_id), "participant_id": str(participant_id)},
        )

    logger.info(f"Participant {participant_id} added to session {session_id}")
    return _parse_enrollment_row(result)


async def set_participant_status(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    status: str,
) -> dict[str, Any]:
    """Override an enrollment's status (e.g. to cancel a participant)."""
    _check_status(status)

    result = await conn.fetchrow(
        f"""
        UPDATE enrollments
        SET status = $3, updated_at = CURRENT_TIMESTAMP
        WHERE session_id = $1 AND participant_id = $2
        RETURNING {ENROLLMENT_COLUMNS}
        """,
        str(session_id),
        str(participant_id),
        status,
    )
    if not result:
        raise NotFoundError("Participant is not enrolled in this session")

    logger.info(
        f"Enrollment status for {participant_id} in {session_id} set to {status}"
    )
    return _parse_enrollment_row(result)


async def remove_participant(
    conn: asyncpg.Connection, session_id: UUID, participant_id: UUID
) -> None:
    """Hard-delete an enrollment."""
    result = await conn.execute(
        "DELETE FROM enrollments WHERE session_id = $1 AND participant_id = $2",
        str(session_id),
        str(participant_id),
    )
    if affected_rows(result) == 0:
        raise NotFoundError("Participant is not enrolled in this session")

    logger.info(f"Participant {participant_id} removed from session {session_id}")


def is_admitted(enrollment: dict[str, Any] | None) -> bool:
    """
    True once the participant redeemed the PIN or a facilitator confirmed them.

    Rows created by progress tracking alone stay ``pending`` and do not count.
    """
    return enrollment is not None and enrollment["status"] == "confirmed"


def _check_status(status: str) -> None:
    if status not in ENROLLMENT_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Use one of: {', '.join(ENROLLMENT_STATUSES)}",
            {"field": "status"},
        )


def _parse_enrollment_row(row: asyncpg.Record) -> dict[str, Any]:
    """Parse an enrollment row, converting ids to strings and progress to float."""
    result = dict(row)
    for field in ("id", "session_id", "participant_id"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    if result.get("training_progress") is not None:
        result["training_progress"] = float(result["training_progress"])
    return result
