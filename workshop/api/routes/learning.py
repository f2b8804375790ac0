"""Learning module catalog and per-participant module progress."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from workshop.api.deps import CurrentUser, require_admin, require_participant
from workshop.core.database import get_db
from workshop.core.responses import success_response
from workshop.services import learning as learning_service
from workshop.services.quiz import get_latest_result

router = APIRouter(prefix="/learning", tags=["Learning"])


class ModuleCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    summary: str = ""
    content: str = ""
    position: int | None = Field(None, ge=0)


class ModuleProgressRequest(BaseModel):
    completed: bool = True
    session_id: UUID | None = None


@router.get("/modules")
async def list_modules(
    current_user: CurrentUser,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Active modules in order, with the caller's completion flags."""
    data = await learning_service.list_modules(conn, UUID(current_user["id"]))
    return success_response(data=data)


@router.post("/modules", status_code=status.HTTP_201_CREATED)
async def create_module(
    body: ModuleCreate,
    current_user: Annotated[dict, Depends(require_admin)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Add a module to the catalog. Admin only."""
    module = await learning_service.create_module(
        conn, body.title, body.summary, body.content, body.position
    )
    return success_response(data=module, message="Module created")


@router.post("/modules/{module_id}/progress")
async def set_module_progress(
    module_id: UUID,
    body: ModuleProgressRequest,
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """
    Mark a module completed (or not).

    **Request Body:**
    ```json
    {"completed": true, "session_id": "..."}
    ```

    With `session_id` the overall percentage also becomes that enrollment's
    training progress.
    """
    result = await learning_service.set_module_progress(
        conn, UUID(current_user["id"]), module_id, body.completed, body.session_id
    )
    return success_response(data=result)


@router.get("/progress")
async def get_progress(
    current_user: Annotated[dict, Depends(require_participant)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
):
    """Module completion summary and the latest quiz attempt in any session."""
    participant_id = UUID(current_user["id"])
    modules = await learning_service.get_module_summary(conn, participant_id)
    latest = await get_latest_result(conn, participant_id)
    return success_response(data={"modules": modules, "latest_quiz": latest})
