"""FastAPI application for the workshop facilitation backend."""

import time
from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from workshop.api.errors import register_exception_handlers
from workshop.api.routes import auth, learning, participants, quiz, sessions, voting
from workshop.core.config import settings
from workshop.core.database import Database
from workshop.core.exceptions import TransientStoreError
from workshop.core.logging_config import get_logger, setup_logging
from workshop.core.responses import error_response, success_response

setup_logging()
logger = get_logger(__name__)

ROUTERS = (
    auth.router,
    sessions.router,
    participants.router,
    learning.router,
    quiz.router,
    voting.router,
)

ALLOWED_METHODS = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Workshop backend starting ({settings.ENVIRONMENT})")
    app.state.db = Database(settings)

    # Tests override the connection dependency and never open a pool
    if settings.ENVIRONMENT != "test":
        await app.state.db.connect()

    yield

    await app.state.db.close()
    logger.info("Workshop backend stopped")


app = FastAPI(
    title="Workshop Backend",
    description="""
    Sessions, PIN enrollment, the quiz gate and activity voting for
    climate-adaptation planning workshops.

    1. A facilitator creates a session with candidate activities and quiz questions
    2. Participants join with the session PIN
    3. Participants complete the learning module and pass the quiz
    4. Participants score and prioritise each candidate activity
    5. Anyone signed in can follow the ranked live results

    Send `Authorization: Bearer <token>` on every call except login and health.
    Routes are served under `/v1` and, for the latest version, at the root.
    """,
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    if settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=["*"],
    )
else:
    logger.info(f"CORS allowed origins: {settings.cors_origins_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )

register_exception_handlers(app)

v1_router = APIRouter(prefix="/v1")
for router in ROUTERS:
    v1_router.include_router(router)
app.include_router(v1_router)

for router in ROUTERS:
    app.include_router(router)


@app.get("/health")
async def health_check(request: Request):
    """200 when the database answers, 503 otherwise."""
    db: Database = request.app.state.db
    checks = {"api": {"status": "healthy"}}

    try:
        async with db.connection() as conn:
            await conn.fetchval("SELECT 1")
    except (TransientStoreError, RuntimeError, asyncpg.exceptions.PostgresError) as e:
        checks["database"] = {"status": "unhealthy", "message": f"Database check failed: {e!s}"}
        return error_response(
            503,
            "Health check failed",
            data={"status": "unhealthy", "timestamp": time.time(), "checks": checks},
        )

    checks["database"] = {"status": "healthy", "pool": db.pool_stats()}
    return success_response(data={"status": "healthy", "timestamp": time.time(), "checks": checks})
