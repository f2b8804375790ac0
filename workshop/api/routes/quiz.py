"""Quiz routes."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from workshop.api.deps import CurrentUser, require_participant
from workshop.core.database import get_db
from workshop.core.responses import success_response
from workshop.services import quiz as quiz_service

router = APIRouter(prefix="/sessions", tags=["Quiz"])


class AnswerIn(BaseModel):
    question_id: UUID
    answer: str


class SubmitQuizRequest(BaseModel):
    answers: list[AnswerIn]


@router.get("/quiz/latest-result")
async def latest_result(
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    session_id: UUID | None = Query(None, description="Restrict to one session"),
):
    """Most recent quiz attempt of the current user, or null."""
    result = await quiz_service.get_latest_result(
        conn, UUID(current_user["id"]), session_id
    )
    return success_response(data=result)


@router.get("/{session_id}/questions")
async def get_questions(
    session_id: UUID,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    count: int | None = Query(None, ge=1, le=100, description="Sample size"),
):
    """Quiz questions with their options. Correct answers are never included."""
    questions = await quiz_service.get_questions(conn, session_id, count)
    return success_response(data=questions)


@router.post("/{session_id}/submit-test")
async def submit_test(
    session_id: UUID,
    body: SubmitQuizRequest,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Submit quiz answers for server-side grading.

    **Request Body:**
    ```json
    {"answers": [{"question_id": "...", "answer": "b"}]}
    ```
    """
    result = await quiz_service.submit_quiz(
        conn,
        session_id,
        UUID(current_user["id"]),
        [answer.model_dump(mode="json") for answer in body.answers],
    )
    return success_response(data=result, message=result["message"])
