"""Session registry: workshop sessions, their candidate activities and quiz questions."""

import json
from datetime import date, time
from typing import Any
from uuid import UUID

import asyncpg

from workshop.core.config import settings
from workshop.core.database import affected_rows
from workshop.core.exceptions import (
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    ResourceExhaustedError,
    ValidationError,
)
from workshop.core.logging_config import get_logger
from workshop.core.validation import sanitize_string, validate_criteria
from workshop.utils.pins import generate_pin

logger = get_logger(__name__)

SESSION_KINDS = ("in_person", "virtual", "hybrid")
SESSION_STATES = ("scheduled", "in_progress", "concluded", "cancelled")
TERMINAL_STATES = ("concluded", "cancelled")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"concluded", "cancelled"}),
    "concluded": frozenset(),
    "cancelled": frozenset(),
}

UPDATABLE_FIELDS = {"title", "description", "state", "scheduled_date", "scheduled_time"}

PIN_INDEX_NAME = "uq_sessions_active_pin"

SESSION_COLUMNS = """
    s.id, s.title, s.description, s.scheduled_date, s.scheduled_time,
    s.duration_hours, s.province, s.district, s.location, s.virtual_link,
    s.notes, s.facilitator_id, s.expected_participants, s.kind, s.state,
    s.join_pin, s.created_at, s.updated_at
"""


# ============================================
# STATE MACHINE
# ============================================


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def check_transition(current: str, target: str) -> None:
    """
    Validate a session state change.

    Re-asserting the current state is a no-op. Anything else must follow
    scheduled -> in_progress -> concluded, with cancelled reachable from both
    non-terminal states.
    """
    if target not in SESSION_STATES:
        raise ValidationError(
            f"Invalid state '{target}'. Use one of: {', '.join(SESSION_STATES)}",
            {"field": "state"},
        )
    if current == target:
        return
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(
            f"Cannot move a session from '{current}' to '{target}'",
            {"from": current, "to": target},
        )


# ============================================
# INPUT VALIDATION
# ============================================


def _validate_activity(raw: dict[str, Any], index: int) -> dict[str, Any]:
    activity = sanitize_string(raw.get("activity"), max_length=2000)
    if not activity:
        raise ValidationError(
            f"Activity #{index} is missing its text", {"field": f"activities[{index}].activity"}
        )
    return {
        "strategic_objective": sanitize_string(raw.get("strategic_objective"), 1000)
        or "Not defined",
        "activity": activity,
        "description": sanitize_string(raw.get("description"), 5000),
        "criteria": validate_criteria(raw.get("criteria")),
        "priority_tier": raw.get("priority_tier"),
        "time_to_impact": raw.get("time_to_impact"),
        "capex_tier": raw.get("capex_tier"),
        "maladaptation_risk": raw.get("maladaptation_risk"),
    }


def _validate_question(raw: dict[str, Any], index: int) -> dict[str, Any]:
    question = sanitize_string(raw.get("question"), 2000)
    if not question:
        raise ValidationError(
            f"Question #{index} has no text", {"field": f"questions[{index}].question"}
        )

    options = raw.get("options") or {}
    if not isinstance(options, dict) or len(options) < 2:
        raise ValidationError(
            f"Question #{index} needs at least two options",
            {"field": f"questions[{index}].options"},
        )
    options = {str(key).strip().lower(): str(text) for key, text in options.items()}

    correct = str(raw.get("correct_answer") or "").strip().lower()
    if correct not in options:
        raise ValidationError(
            f"Question #{index} correct answer must be one of its option keys",
            {"field": f"questions[{index}].correct_answer"},
        )

    return {
        "question": question,
        "options": options,
        "correct_answer": correct,
        "module": sanitize_string(raw.get("module"), 100) or "General",
        "difficulty": raw.get("difficulty") or "medium",
        "explanation": raw.get("explanation"),
    }


def validate_session_input(
    title: str | None,
    scheduled_date: date | None,
    facilitator_id: UUID | None,
    kind: str,
    province: str | None,
    district: str | None,
    virtual_link: str | None,
) -> None:
    """Check the required fields of a new session."""
    if not sanitize_string(title):
        raise ValidationError("Title is required", {"field": "title"})
    if scheduled_date is None:
        raise ValidationError("Date is required", {"field": "scheduled_date"})
    if facilitator_id is None:
        raise ValidationError("Facilitator is required", {"field": "facilitator_id"})
    if kind not in SESSION_KINDS:
        raise ValidationError(
            f"Invalid session kind '{kind}'. Use one of: {', '.join(SESSION_KINDS)}",
            {"field": "kind"},
        )

    has_place = bool(sanitize_string(province)) and bool(sanitize_string(district))
    if kind == "virtual":
        if not has_place and not sanitize_string(virtual_link):
            raise ValidationError(
                "Virtual sessions need a virtual link or a province and district",
                {"field": "virtual_link"},
            )
    elif not has_place:
        raise ValidationError(
            "Province and district are required", {"field": "province"}
        )


# ============================================
# SESSION CRUD OPERATIONS
# ============================================


async def create_session(
    conn: asyncpg.Connection,
    facilitator_id: UUID,
    title: str,
    scheduled_date: date,
    scheduled_time: time | None = None,
    duration_hours: int = 2,
    description: str | None = None,
    province: str | None = None,
    district: str | None = None,
    location: str | None = None,
    virtual_link: str | None = None,
    notes: str | None = None,
    expected_participants: int = 20,
    kind: str = "in_person",
    activities: list[dict[str, Any]] | None = None,
    questions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Create a session with its candidate activities and quiz questions.

    Everything is written in one transaction. The join PIN is regenerated on
    collision with another joinable session, up to PIN_MAX_ATTEMPTS times.
    """
    validate_session_input(
        title, scheduled_date, facilitator_id, kind, province, district, virtual_link
    )
    clean_activities = [
        _validate_activity(raw, i) for i, raw in enumerate(activities or [], start=1)
    ]
    clean_questions = [
        _validate_question(raw, i) for i, raw in enumerate(questions or [], start=1)
    ]

    values = (
        sanitize_string(title, 255),
        sanitize_string(description, 5000),
        scheduled_date,
        scheduled_time or time(10, 0),
        duration_hours,
        sanitize_string(province, 100) or None,
        sanitize_string(district, 100) or None,
        sanitize_string(location, 255) or None,
        sanitize_string(virtual_link, 500) or None,
        sanitize_string(notes, 5000) or None,
        str(facilitator_id),
        expected_participants,
        kind,
    )

    async with conn.transaction():
        row = await _insert_with_unique_pin(conn, values)
        session_id = row["id"]

        if clean_activities:
            await conn.executemany(
                """
                INSERT INTO candidate_activities (
                    session_id, position, strategic_objective, activity, description,
                    criteria, priority_tier, time_to_impact, capex_tier, maladaptation_risk
                )
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10)
                """,
                [
                    (
                        session_id,
                        position,
                        a["strategic_objective"],
                        a["activity"],
                        a["description"],
                        json.dumps(a["criteria"]),
                        a["priority_tier"],
                        a["time_to_impact"],
                        a["capex_tier"],
                        a["maladaptation_risk"],
                    )
                    for position, a in enumerate(clean_activities, start=1)
                ],
            )

        if clean_questions:
            await conn.executemany(
                """
                INSERT INTO quiz_questions (
                    session_id, question, options, correct_answer, module,
                    difficulty, explanation
                )
                VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7)
                """,
                [
                    (
                        session_id,
                        q["question"],
                        json.dumps(q["options"]),
                        q["correct_answer"],
                        q["module"],
                        q["difficulty"],
                        q["explanation"],
                    )
                    for q in clean_questions
                ],
            )

        session = _parse_session_row(row)
        session["activities"] = await _fetch_activities(conn, session_id)
        session["question_count"] = len(clean_questions)

    logger.info(
        f"Session created: {session['id']} with {len(clean_activities)} activities "
        f"and {len(clean_questions)} questions",
        extra={
            "extra_fields": {
                "event_type": "session_created",
                "session_id": session["id"],
                "facilitator_id": str(facilitator_id),
            }
        },
    )
    return session


async def _insert_with_unique_pin(
    conn: asyncpg.Connection, values: tuple[Any, ...]
) -> asyncpg.Record:
    """Insert the session row, regenerating the PIN while it collides."""
    for attempt in range(1, settings.PIN_MAX_ATTEMPTS + 1):
        pin = generate_pin(settings.PIN_LENGTH)
        if await pin_in_use(conn, pin):
            logger.warning(f"PIN collision on attempt {attempt}, regenerating")
            continue
        try:
            # Savepoint so a lost race does not abort the outer transaction
            async with conn.transaction():
                return await conn.fetchrow(
                    """
                    INSERT INTO sessions (
                        title, description, scheduled_date, scheduled_time,
                        duration_hours, province, district, location, virtual_link,
                        notes, facilitator_id, expected_participants, kind,
                        state, join_pin
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
                            'scheduled', $14)
                    RETURNING *
                    """,
                    *values,
                    pin,
                )
        except asyncpg.exceptions.UniqueViolationError as e:
            if e.constraint_name != PIN_INDEX_NAME:
                raise
            logger.warning(f"PIN collision on insert (attempt {attempt}), regenerating")

    raise ResourceExhaustedError(
        "Could not allocate a unique join PIN. Please try again.",
        {"attempts": settings.PIN_MAX_ATTEMPTS},
    )


async def pin_in_use(conn: asyncpg.Connection, pin: str) -> bool:
    """True if a joinable (non-terminal) session already holds this PIN."""
    result = await conn.fetchval(
        """
        SELECT 1 FROM sessions
        WHERE join_pin = $1 AND state NOT IN ('concluded', 'cancelled')
        """,
        pin,
    )
    return result is not None


async def get_session(conn: asyncpg.Connection, session_id: UUID) -> dict[str, Any]:
    """Get a session with facilitator name and participant/activity counts."""
    result = await conn.fetchrow(
        f"""
        SELECT {SESSION_COLUMNS},
               u.name AS facilitator_name,
               (SELECT COUNT(*) FROM enrollments e WHERE e.session_id = s.id)
                   AS total_participants,
               (SELECT COUNT(*) FROM candidate_activities a WHERE a.session_id = s.id)
                   AS total_activities
        FROM sessions s
        LEFT JOIN users u ON s.facilitator_id = u.id
        WHERE s.id = $1
        """,
        str(session_id),
    )
    if not result:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})
    return _parse_session_row(result)


async def list_sessions(
    conn: asyncpg.Connection,
    province: str | None = None,
    district: str | None = None,
    state: str | None = None,
    kind: str | None = None,
    facilitator_id: UUID | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """List sessions, newest scheduled first, with optional filters."""
    where = " WHERE 1=1"
    params: list[Any] = []

    if province:
        params.append(province)
        where += f" AND s.province = ${len(params)}"

    if district:
        params.append(district)
        where += f" AND s.district = ${len(params)}"

    if state:
        params.append(state)
        where += f" AND s.state = ${len(params)}"

    if kind:
        params.append(kind)
        where += f" AND s.kind = ${len(params)}"

    if facilitator_id:
        params.append(str(facilitator_id))
        where += f" AND s.facilitator_id = ${len(params)}"

    total = await conn.fetchval(f"SELECT COUNT(*) FROM sessions s{where}", *params)

    query = f"""
        SELECT {SESSION_COLUMNS}, u.name AS facilitator_name
        FROM sessions s
        LEFT JOIN users u ON s.facilitator_id = u.id
        {where}
        ORDER BY s.scheduled_date DESC, s.scheduled_time DESC, s.created_at DESC
    """
    params.append(limit)
    query += f" LIMIT ${len(params)}"
    params.append(offset)
    query += f" OFFSET ${len(params)}"

    rows = await conn.fetch(query, *params)
    return [_parse_session_row(row) for row in rows], total or 0


async def update_session(
    conn: asyncpg.Connection,
    session_id: UUID,
    **fields: Any,
) -> dict[str, Any]:
    """
    Partially update a session.

    Only title, description, state, scheduled_date and scheduled_time can
    change. State changes go through check_transition.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}",
            {"fields": sorted(unknown)},
        )

    updates = {key: value for key, value in fields.items() if value is not None}
    if "title" in updates:
        updates["title"] = sanitize_string(updates["title"], 255)
        if not updates["title"]:
            raise ValidationError("Title cannot be empty", {"field": "title"})
    if "description" in updates:
        updates["description"] = sanitize_string(updates["description"], 5000)

    async with conn.transaction():
        current = await conn.fetchrow(
            "SELECT id, state FROM sessions WHERE id = $1 FOR UPDATE",
            str(session_id),
        )
        if not current:
            raise NotFoundError("Session not found", {"session_id": str(session_id)})

        if "state" in updates:
            check_transition(current["state"], updates["state"])

        if updates:
            set_clauses = []
            params: list[Any] = []
            for key, value in updates.items():
                params.append(value)
                set_clauses.append(f"{key} = ${len(params)}")
            params.append(str(session_id))
            await conn.execute(
                f"""
                UPDATE sessions
                SET {', '.join(set_clauses)}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ${len(params)}
                """,
                *params,
            )

    if "state" in updates and updates["state"] != current["state"]:
        logger.info(
            f"Session {session_id} moved from {current['state']} to {updates['state']}",
            extra={
                "extra_fields": {
                    "event_type": "session_state_changed",
                    "session_id": str(session_id),
                    "from": current["state"],
                    "to": updates["state"],
                }
            },
        )

    return await get_session(conn, session_id)


async def delete_session(conn: asyncpg.Connection, session_id: UUID) -> dict[str, int]:
    """
    Delete a session and everything that depends on it.

    Votes, enrollments, candidate activities and quiz questions are removed
    before the session row, in one transaction. Quiz attempt history is kept
    with its session reference cleared.
    """
    sid = str(session_id)
    async with conn.transaction():
        exists = await conn.fetchval(
            "SELECT 1 FROM sessions WHERE id = $1 FOR UPDATE", sid
        )
        if not exists:
            raise NotFoundError("Session not found", {"session_id": sid})

        removed = {
            "votes": affected_rows(
                await conn.execute("DELETE FROM votes WHERE session_id = $1", sid)
            ),
            "enrollments": affected_rows(
                await conn.execute("DELETE FROM enrollments WHERE session_id = $1", sid)
            ),
            "activities": affected_rows(
                await conn.execute(
                    "DELETE FROM candidate_activities WHERE session_id = $1", sid
                )
            ),
            "questions": affected_rows(
                await conn.execute(
                    "DELETE FROM quiz_questions WHERE session_id = $1", sid
                )
            ),
        }
        await conn.execute("DELETE FROM sessions WHERE id = $1", sid)

    logger.info(
        f"Session deleted: {sid}",
        extra={"extra_fields": {"event_type": "session_deleted", "session_id": sid, **removed}},
    )
    return removed


# ============================================
# ACTIVITIES & ACCESS
# ============================================


async def list_activities(
    conn: asyncpg.Connection, session_id: UUID
) -> list[dict[str, Any]]:
    """Candidate activities of a session in creation order."""
    exists = await conn.fetchval("SELECT 1 FROM sessions WHERE id = $1", str(session_id))
    if not exists:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})
    return await _fetch_activities(conn, str(session_id))


async def _fetch_activities(conn: asyncpg.Connection, session_id: Any) -> list[dict[str, Any]]:
    rows = await conn.fetch(
        """
        SELECT id, session_id, position, strategic_objective, activity, description,
               criteria, priority_tier, time_to_impact, capex_tier,
               maladaptation_risk, created_at
        FROM candidate_activities
        WHERE session_id = $1
        ORDER BY created_at, position
        """,
        session_id,
    )
    return [parse_activity_row(row) for row in rows]


def can_manage(session: dict[str, Any], principal: dict[str, Any]) -> bool:
    """Only admins and the owning facilitator may manage a session."""
    if principal.get("role") == "admin":
        return True
    return principal.get("role") == "facilitator" and str(session.get("facilitator_id")) == str(
        principal.get("id")
    )


def ensure_can_manage(session: dict[str, Any], principal: dict[str, Any]) -> None:
    if not can_manage(session, principal):
        raise ForbiddenError("Only the session's facilitator or an admin can do this")


def visible_to(session: dict[str, Any], principal: dict[str, Any]) -> dict[str, Any]:
    """
    The session as this principal may see it.

    The join PIN is the only credential for entering a session, so it is
    shown to the people who hand it out and nobody else.
    """
    if can_manage(session, principal):
        return session
    return {k: v for k, v in session.items() if k != "join_pin"}


# ============================================
# HELPER FUNCTIONS
# ============================================


def _parse_session_row(row: asyncpg.Record) -> dict[str, Any]:
    """Parse a session row into a dict."""
    result = dict(row)
    for field in ("id", "facilitator_id"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    return result


def parse_activity_row(row: asyncpg.Record) -> dict[str, Any]:
    """Parse a candidate activity row, decoding the criteria JSON."""
    result = dict(row)
    for field in ("id", "session_id"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    criteria = result.get("criteria")
    if isinstance(criteria, str):
        result["criteria"] = json.loads(criteria)
    return result
