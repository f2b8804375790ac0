"""Voting aggregator: weighted votes on candidate activities and live rankings."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import asyncpg

from workshop.core.config import settings
from workshop.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from workshop.core.logging_config import audit_logger, get_logger
from workshop.core.validation import check_range, sanitize_string
from workshop.services.enrollments import get_enrollment, is_admitted
from workshop.services.sessions import is_terminal, parse_activity_row

logger = get_logger(__name__)


# ============================================
# BATCH VALIDATION & RANKING (pure)
# ============================================


def validate_vote_batch(
    votes: Any,
    activity_ids: set[str],
    score_range: tuple[int, int] = (1, 5),
    priority_range: tuple[int, int] = (1, 10),
) -> list[dict[str, Any]]:
    """
    Validate a whole vote batch before anything is written.

    Every entry must reference one of ``activity_ids`` and carry an integer
    score (and optional priority) inside its range. Priority defaults to
    twice the score. Any bad entry rejects the entire batch.
    """
    if not isinstance(votes, list) or not votes:
        raise ValidationError("At least one vote is required", {"field": "votes"})

    cleaned = []
    for i, vote in enumerate(votes):
        if not isinstance(vote, dict):
            raise ValidationError(f"Vote #{i + 1} is malformed", {"field": f"votes[{i}]"})

        activity_id = str(vote.get("activity_id") or "")
        if activity_id not in activity_ids:
            raise ValidationError(
                f"Vote #{i + 1} references an activity outside this session",
                {"field": f"votes[{i}].activity_id", "activity_id": activity_id or None},
            )

        score = check_range(vote.get("score"), *score_range, field=f"votes[{i}].score")
        priority = vote.get("priority")
        if priority is None:
            priority = score * 2
        priority = check_range(priority, *priority_range, field=f"votes[{i}].priority")

        cleaned.append(
            {
                "activity_id": activity_id,
                "score": score,
                "priority": priority,
                "comment": sanitize_string(vote.get("comment"), 2000) or None,
            }
        )
    return cleaned


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def rank_activities(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Order aggregated activities for display.

    Highest mean score first, then most votes, then creation order. Activities
    without votes report zero means and an empty comment list.
    """
    activities = []
    for row in rows:
        item = dict(row)
        item["vote_count"] = int(item.get("vote_count") or 0)
        item["mean_score"] = _as_float(item.get("mean_score")) if item["vote_count"] else 0.0
        item["mean_priority"] = (
            _as_float(item.get("mean_priority")) if item["vote_count"] else 0.0
        )
        item["comments"] = [
            c for c in (item.get("comments") or []) if c is not None and c.strip()
        ]
        activities.append(item)

    activities.sort(
        key=lambda a: (
            -a["mean_score"],
            -a["vote_count"],
            a.get("created_at") or datetime.min.replace(tzinfo=timezone.utc),
            a.get("position") or 0,
        )
    )

    for rank, item in enumerate(activities, start=1):
        item["rank"] = rank
        item["mean_score"] = round(item["mean_score"], 2)
        item["mean_priority"] = round(item["mean_priority"], 2)
    return activities


# ============================================
# VOTE SUBMISSION
# ============================================


async def submit_votes(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    votes: Any,
) -> dict[str, Any]:
    """
    Record a participant's votes for a session.

    Re-voting on the same activity overwrites the earlier score, priority and
    comment. The batch is applied in order inside one transaction. The session
    row is share-locked and the enrollment row is locked for update before the
    gate is checked, so neither a state change nor a quiz re-attempt can land
    between the check and the commit.
    """
    sid = str(session_id)
    async with conn.transaction():
        session = await conn.fetchrow(
            "SELECT id, state FROM sessions WHERE id = $1 FOR SHARE", sid
        )
        if not session:
            raise NotFoundError("Session not found", {"session_id": sid})
        if is_terminal(session["state"]):
            raise InvalidStateError(
                f"Voting is closed: the session is {session['state']}",
                {"state": session["state"]},
            )

        enrollment = await get_enrollment(conn, session_id, participant_id, for_update=True)
        if not is_admitted(enrollment) or not enrollment["quiz_passed"]:
            audit_logger.log_gate_blocked(str(participant_id), sid, "voting")
            raise ForbiddenError("Complete the quiz before voting")

        activity_ids = {
            str(r["id"])
            for r in await conn.fetch(
                "SELECT id FROM candidate_activities WHERE session_id = $1", sid
            )
        }
        cleaned = validate_vote_batch(
            votes,
            activity_ids,
            (settings.VOTE_SCORE_MIN, settings.VOTE_SCORE_MAX),
            (settings.VOTE_PRIORITY_MIN, settings.VOTE_PRIORITY_MAX),
        )

        inserted = 0
        for vote in cleaned:
            row = await conn.fetchrow(
                """
                INSERT INTO votes (participant_id, activity_id, session_id, score, priority, comment)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (participant_id, activity_id, session_id)
                DO UPDATE SET score = EXCLUDED.score,
                              priority = EXCLUDED.priority,
                              comment = EXCLUDED.comment,
                              updated_at = CURRENT_TIMESTAMP
                RETURNING (xmax = 0) AS inserted
                """,
                str(participant_id),
                vote["activity_id"],
                sid,
                vote["score"],
                vote["priority"],
                vote["comment"],
            )
            inserted += bool(row["inserted"])

        await conn.execute(
            """
            UPDATE enrollments
            SET voting_completed = TRUE, updated_at = CURRENT_TIMESTAMP
            WHERE session_id = $1 AND participant_id = $2
            """,
            sid,
            str(participant_id),
        )

    logger.info(
        f"Votes recorded for {participant_id} in session {sid}: "
        f"{inserted} new, {len(cleaned) - inserted} updated",
        extra={
            "extra_fields": {
                "event_type": "votes_submitted",
                "session_id": sid,
                "participant_id": str(participant_id),
                "votes": len(cleaned),
            }
        },
    )

    return {
        "session_id": sid,
        "participant_id": str(participant_id),
        "votes_recorded": len(cleaned),
        "inserted": inserted,
        "updated": len(cleaned) - inserted,
        "submitted_at": datetime.now(timezone.utc),
    }


async def has_voted(
    conn: asyncpg.Connection, session_id: UUID, participant_id: UUID
) -> bool:
    """Check if the participant has at least one vote in the session."""
    result = await conn.fetchval(
        """
        SELECT EXISTS(
            SELECT 1 FROM votes WHERE session_id = $1 AND participant_id = $2
        )
        """,
        str(session_id),
        str(participant_id),
    )
    return bool(result)


# ============================================
# RESULTS
# ============================================


async def get_live_results(
    conn: asyncpg.Connection, session_id: UUID
) -> list[dict[str, Any]]:
    """Ranked aggregates for every candidate activity of a session."""
    sid = str(session_id)
    exists = await conn.fetchval("SELECT 1 FROM sessions WHERE id = $1", sid)
    if not exists:
        raise NotFoundError("Session not found", {"session_id": sid})

    rows = await conn.fetch(
        """
        SELECT a.id, a.session_id, a.position, a.strategic_objective, a.activity,
               a.description, a.criteria, a.priority_tier, a.time_to_impact,
               a.capex_tier, a.maladaptation_risk, a.created_at,
               COUNT(v.id) AS vote_count,
               AVG(v.score) AS mean_score,
               AVG(v.priority) AS mean_priority,
               COALESCE(
                   array_agg(v.comment ORDER BY v.updated_at)
                       FILTER (WHERE v.comment IS NOT NULL AND btrim(v.comment) <> ''),
                   '{}'
               ) AS comments
        FROM candidate_activities a
        LEFT JOIN votes v ON v.activity_id = a.id AND v.session_id = a.session_id
        WHERE a.session_id = $1
        GROUP BY a.id
        """,
        sid,
    )
    return rank_activities([parse_activity_row(row) for row in rows])


async def get_results_summary(
    conn: asyncpg.Connection, session_id: UUID
) -> dict[str, Any]:
    """Session-wide vote statistics: voters, votes, mean score, distribution."""
    sid = str(session_id)
    totals = await conn.fetchrow(
        """
        SELECT COUNT(DISTINCT participant_id) AS voters,
               COUNT(*) AS total_votes,
               AVG(score) AS mean_score
        FROM votes
        WHERE session_id = $1
        """,
        sid,
    )
    rows = await conn.fetch(
        """
        SELECT score, COUNT(*) AS count
        FROM votes
        WHERE session_id = $1
        GROUP BY score
        """,
        sid,
    )

    distribution = {
        str(score): 0 for score in range(settings.VOTE_SCORE_MIN, settings.VOTE_SCORE_MAX + 1)
    }
    for row in rows:
        distribution[str(row["score"])] = row["count"]

    return {
        "voters": totals["voters"] if totals else 0,
        "total_votes": totals["total_votes"] if totals else 0,
        "mean_score": round(_as_float(totals["mean_score"] if totals else None), 2),
        "score_distribution": distribution,
    }


async def get_participant_votes(
    conn: asyncpg.Connection, session_id: UUID, participant_id: UUID
) -> list[dict[str, Any]]:
    """
    The session's activities with the participant's current vote on each.

    Activities the participant has not voted on carry ``my_vote = None``.
    """
    exists = await conn.fetchval("SELECT 1 FROM sessions WHERE id = $1", str(session_id))
    if not exists:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})

    rows = await conn.fetch(
        """
        SELECT a.id, a.session_id, a.position, a.strategic_objective, a.activity,
               a.description, a.criteria, a.priority_tier, a.time_to_impact,
               a.capex_tier, a.maladaptation_risk, a.created_at,
               v.score AS vote_score, v.priority AS vote_priority,
               v.comment AS vote_comment, v.updated_at AS voted_at
        FROM candidate_activities a
        LEFT JOIN votes v
            ON v.activity_id = a.id AND v.session_id = a.session_id
           AND v.participant_id = $2
        WHERE a.session_id = $1
        ORDER BY a.created_at, a.position
        """,
        str(session_id),
        str(participant_id),
    )

    activities = []
    for row in rows:
        item = parse_activity_row(row)
        score = item.pop("vote_score")
        priority = item.pop("vote_priority")
        comment = item.pop("vote_comment")
        voted_at = item.pop("voted_at")
        item["my_vote"] = (
            {"score": score, "priority": priority, "comment": comment, "voted_at": voted_at}
            if score is not None
            else None
        )
        activities.append(item)
    return activities

