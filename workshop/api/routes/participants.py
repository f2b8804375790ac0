"""Enrollment routes: joining by PIN, training progress and participant management."""

from typing import Annotated, Literal
from uuid import UUID

import asyncpg
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import BaseModel, Field

from workshop.api.deps import CurrentUser, require_participant
from workshop.core.config import settings
from workshop.core.database import Database, get_database, get_db
from workshop.core.logging_config import get_logger
from workshop.core.responses import paginated_response, success_response
from workshop.services import enrollments as enrollments_service
from workshop.services import learning as learning_service
from workshop.services import sessions as sessions_service
from workshop.services.users import touch_last_active

router = APIRouter(prefix="/sessions", tags=["Participants"])
logger = get_logger(__name__)

EnrollmentStatus = Literal["pending", "confirmed", "cancelled"]


class JoinRequest(BaseModel):
    pin: str = Field(..., min_length=1, max_length=12)


class ProgressRequest(BaseModel):
    session_id: UUID
    percentage: float


class AddParticipantRequest(BaseModel):
    participant_id: UUID
    status: EnrollmentStatus = "confirmed"


class ParticipantStatusRequest(BaseModel):
    status: EnrollmentStatus


async def record_last_active(db: Database, user_id: str) -> None:
    """Best-effort update of a participant's last activity time."""
    try:
        async with db.connection() as conn:
            await touch_last_active(conn, UUID(user_id))
    except Exception as e:
        logger.warning(f"Could not update last_active_at for {user_id}: {e}")


async def _managed_session(
    conn: asyncpg.Connection, session_id: UUID, current_user: dict
) -> dict:
    session = await sessions_service.get_session(conn, session_id)
    sessions_service.ensure_can_manage(session, current_user)
    return session


@router.post("/join")
async def join_session(
    body: JoinRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Join a session with its PIN (case-insensitive).

    **Request Body:**
    ```json
    {"pin": "ab3x9k"}
    ```
    """
    enrollment = await enrollments_service.join_by_pin(
        conn, body.pin, UUID(current_user["id"])
    )
    background_tasks.add_task(
        record_last_active, get_database(request), current_user["id"]
    )
    return success_response(data=enrollment, message="Joined session successfully")


@router.post("/progress")
async def update_progress(
    body: ProgressRequest,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Record learning-module progress (0-100)."""
    enrollment = await enrollments_service.update_training_progress(
        conn, body.session_id, UUID(current_user["id"]), body.percentage
    )
    return success_response(data=enrollment)


@router.get("/{session_id}/status")
async def get_my_status(
    session_id: UUID,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Where the caller stands in a session: join, learning, quiz, voting or done."""
    data = await learning_service.get_participant_status(
        conn, session_id, UUID(current_user["id"])
    )
    return success_response(data=data)


@router.get("/{session_id}/participants")
async def list_participants(
    session_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    status_filter: EnrollmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(
        settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT, description="Items per page"
    ),
):
    """List the participants enrolled in a session. Owner facilitator or admin."""
    await _managed_session(conn, session_id, current_user)
    offset = (page - 1) * limit
    items, total = await enrollments_service.list_participants(
        conn, session_id, status=status_filter, limit=limit, offset=offset
    )
    return paginated_response(items=items, page=page, limit=limit, total=total)


@router.post("/{session_id}/participants", status_code=status.HTTP_201_CREATED)
async def add_participant(
    session_id: UUID,
    body: AddParticipantRequest,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Enroll a participant on their behalf. 409 if already enrolled."""
    await _managed_session(conn, session_id, current_user)
    enrollment = await enrollments_service.add_participant(
        conn, session_id, body.participant_id, body.status
    )
    return success_response(data=enrollment, message="Participant added")


@router.patch("/{session_id}/participants/{participant_id}")
async def set_participant_status(
    session_id: UUID,
    participant_id: UUID,
    body: ParticipantStatusRequest,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Change an enrollment's status."""
    await _managed_session(conn, session_id, current_user)
    enrollment = await enrollments_service.set_participant_status(
        conn, session_id, participant_id, body.status
    )
    return success_response(data=enrollment, message="Participant status updated")


@router.delete("/{session_id}/participants/{participant_id}")
async def remove_participant(
    session_id: UUID,
    participant_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Remove a participant from a session."""
    await _managed_session(conn, session_id, current_user)
    await enrollments_service.remove_participant(conn, session_id, participant_id)
    return success_response(message="Participant removed")
