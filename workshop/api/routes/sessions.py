"""Session registry routes."""

from datetime import date, time
from typing import Annotated, Any, Literal
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from workshop.api.deps import CurrentUser, require_admin, require_facilitator
from workshop.core.config import settings
from workshop.core.database import get_db
from workshop.core.responses import paginated_response, success_response
from workshop.services import sessions as sessions_service
from workshop.services import voting as voting_service

router = APIRouter(prefix="/sessions", tags=["Sessions"])


# ============================================================================
# REQUEST MODELS
# ============================================================================


class ActivityIn(BaseModel):
    """Candidate activity supplied with a new session."""

    activity: str = Field(..., min_length=1, max_length=2000)
    strategic_objective: str | None = None
    description: str | None = None
    criteria: dict[str, float] = Field(default_factory=dict)
    priority_tier: str | None = None
    time_to_impact: str | None = None
    capex_tier: str | None = None
    maladaptation_risk: str | None = None


class QuestionIn(BaseModel):
    """Multiple-choice quiz question supplied with a new session."""

    question: str = Field(..., min_length=1, max_length=2000)
    options: dict[str, str]
    correct_answer: str
    module: str | None = None
    difficulty: str | None = None
    explanation: str | None = None


class CreateSessionRequest(BaseModel):
    """Create session request."""

    title: str = Field(..., min_length=1, max_length=255)
    scheduled_date: date
    scheduled_time: time | None = None
    duration_hours: int = Field(2, ge=1, le=24)
    description: str | None = None
    province: str | None = None
    district: str | None = None
    location: str | None = None
    virtual_link: str | None = None
    notes: str | None = None
    expected_participants: int = Field(20, ge=1)
    kind: Literal["in_person", "virtual", "hybrid"] = "in_person"
    facilitator_id: UUID | None = Field(
        None, description="Admins may create a session on a facilitator's behalf"
    )
    activities: list[ActivityIn] = Field(default_factory=list)
    questions: list[QuestionIn] = Field(default_factory=list)


class UpdateSessionRequest(BaseModel):
    """Partial session update."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    state: Literal["scheduled", "in_progress", "concluded", "cancelled"] | None = None
    scheduled_date: date | None = None
    scheduled_time: time | None = None


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    current_user: Annotated[dict, Depends(require_facilitator)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Create a session with its candidate activities and quiz questions.

    A join PIN is generated and returned in the response.
    """
    facilitator_id = current_user["id"]
    if body.facilitator_id and current_user["role"] == "admin":
        facilitator_id = body.facilitator_id

    fields = body.model_dump(exclude={"facilitator_id", "activities", "questions"})
    session = await sessions_service.create_session(
        conn,
        facilitator_id=UUID(str(facilitator_id)),
        activities=[a.model_dump() for a in body.activities],
        questions=[q.model_dump() for q in body.questions],
        **fields,
    )
    return success_response(data=session, message="Session created successfully")


@router.get("")
async def list_sessions(
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    province: str | None = Query(None, description="Filter by province"),
    district: str | None = Query(None, description="Filter by district"),
    state: str | None = Query(None, description="Filter by state"),
    kind: str | None = Query(None, description="Filter by kind"),
    facilitator_id: UUID | None = Query(None, description="Filter by facilitator"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(
        settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT, description="Items per page"
    ),
):
    """
    List sessions, newest scheduled first.

    **Response:**
    ```json
    {
        "success": true,
        "data": {
            "data": [...],
            "pagination": {"page": 1, "limit": 20, "total": 3, "total_pages": 1}
        }
    }
    ```
    """
    offset = (page - 1) * limit
    items, total = await sessions_service.list_sessions(
        conn,
        province=province,
        district=district,
        state=state,
        kind=kind,
        facilitator_id=facilitator_id,
        limit=limit,
        offset=offset,
    )
    items = [sessions_service.visible_to(s, current_user) for s in items]
    return paginated_response(items=items, page=page, limit=limit, total=total)


@router.get("/{session_id}")
async def get_session(
    session_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Get one session."""
    session = await sessions_service.get_session(conn, session_id)
    return success_response(data=sessions_service.visible_to(session, current_user))


@router.patch("/{session_id}")
async def update_session(
    session_id: UUID,
    body: UpdateSessionRequest,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Update title, description, state or schedule. Owner facilitator or admin."""
    session = await sessions_service.get_session(conn, session_id)
    sessions_service.ensure_can_manage(session, current_user)

    updated = await sessions_service.update_session(
        conn, session_id, **body.model_dump(exclude_unset=True)
    )
    return success_response(data=updated, message="Session updated successfully")


@router.delete("/{session_id}")
async def delete_session(
    session_id: UUID,
    current_user: Annotated[dict, Depends(require_admin)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Delete a session and all of its activities, enrollments, questions and votes."""
    removed = await sessions_service.delete_session(conn, session_id)
    return success_response(data={"removed": removed}, message="Session deleted")


@router.get("/{session_id}/activities")
async def list_activities(
    session_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Candidate activities of a session in creation order.

    Participants also get their current vote on each activity as ``my_vote``.
    """
    activities: list[dict[str, Any]]
    if current_user["role"] == "participant":
        activities = await voting_service.get_participant_votes(
            conn, session_id, UUID(current_user["id"])
        )
    else:
        activities = await sessions_service.list_activities(conn, session_id)
    return success_response(data=activities)
