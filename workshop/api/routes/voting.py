"""Voting routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from workshop.api.deps import CurrentUser, require_participant
from workshop.core.database import get_db
from workshop.core.responses import success_response
from workshop.services import voting as voting_service

router = APIRouter(prefix="/sessions", tags=["Voting"])


class VoteIn(BaseModel):
    activity_id: UUID
    score: int
    priority: int | None = None
    comment: str | None = None


class SubmitVotesRequest(BaseModel):
    session_id: UUID
    votes: list[VoteIn]


@router.post("/submit-votes")
async def submit_votes(
    body: SubmitVotesRequest,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Submit or revise votes on a session's candidate activities.

    Requires a passed quiz. Scores run 1-5 and priorities 1-10; priority
    defaults to twice the score. One bad entry rejects the whole batch.
    """
    receipt = await voting_service.submit_votes(
        conn,
        body.session_id,
        UUID(current_user["id"]),
        [vote.model_dump(mode="json") for vote in body.votes],
    )
    return success_response(data=receipt, message="Votes recorded successfully")


@router.get("/{session_id}/live-results")
async def live_results(
    session_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Ranked vote aggregates for every candidate activity, with session statistics."""
    results = await voting_service.get_live_results(conn, session_id)
    summary = await voting_service.get_results_summary(conn, session_id)
    return success_response(data={"results": results, "summary": summary})


@router.get("/{session_id}/has-voted")
async def has_voted(
    session_id: UUID,
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Whether the current user has cast at least one vote in the session."""
    voted = await voting_service.has_voted(conn, session_id, UUID(current_user["id"]))
    return success_response(data={"has_voted": voted})
