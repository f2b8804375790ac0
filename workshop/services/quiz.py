"""
Quiz engine: serves questions without answers and grades attempts server-side.

A participant passes when the unrounded percentage of correct answers reaches
QUIZ_PASS_THRESHOLD. Every attempt is stored; the enrollment's quiz flags
always reflect the latest one.
"""

import json
import math
import random
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
from workshop.services.enrollments import get_enrollment, is_admitted

logger = get_logger(__name__)

QUESTION_COLUMNS = "id, session_id, question, options, correct_answer, module, difficulty, explanation"


# ============================================
# GRADING (pure)
# ============================================


def normalize_answer(value: Any) -> str:
    return str(value or "").strip().lower()


def parse_answers(answers: Any) -> list[tuple[str, str]]:
    """
    Validate a submitted answer list into (question_id, answer) pairs.

    Raises ValidationError if the list is empty, an entry is malformed or a
    question is answered twice.
    """
    if not isinstance(answers, list) or not answers:
        raise ValidationError("At least one answer is required", {"field": "answers"})

    parsed: list[tuple[str, str]] = []
    seen: set[str] = set()
    for i, entry in enumerate(answers):
        if not isinstance(entry, dict) or not entry.get("question_id"):
            raise ValidationError(
                f"Answer #{i + 1} must have a question_id", {"field": f"answers[{i}]"}
            )
        question_id = str(entry["question_id"])
        if question_id in seen:
            raise ValidationError(
                f"Question {question_id} was answered more than once",
                {"field": f"answers[{i}].question_id"},
            )
        seen.add(question_id)
        parsed.append((question_id, normalize_answer(entry.get("answer"))))
    return parsed


def required_question_count(bank_size: int, configured: int | None) -> int:
    """Questions an attempt is graded against: the bank, or the sample size."""
    if configured is None or configured <= 0:
        return bank_size
    return min(configured, bank_size)


def round_score(score: float) -> int:
    """Round half up for display (74.5 -> 75)."""
    return int(math.floor(score + 0.5))


def grade_answers(
    questions: list[dict[str, Any]],
    answers: list[tuple[str, str]],
    required: int,
    threshold: float = 75.0,
) -> dict[str, Any]:
    """
    Grade answers against the authoritative question bank.

    ``total`` is the larger of the answered count and ``required``, so skipping
    questions counts against the participant. The pass decision is made on
    the unrounded score.
    """
    if not questions or required <= 0:
        raise InvalidStateError("This session has no quiz questions")

    by_id = {str(q["id"]): q for q in questions}
    unknown = [qid for qid, _ in answers if qid not in by_id]
    if unknown:
        raise ValidationError(
            "Answers reference questions that are not part of this quiz",
            {"question_ids": unknown},
        )

    details = []
    modules: dict[str, dict[str, Any]] = {}
    correct = 0
    for question_id, answer in answers:
        question = by_id[question_id]
        is_correct = answer == normalize_answer(question["correct_answer"])
        correct += is_correct

        details.append(
            {
                "question_id": question_id,
                "answer": answer,
                "correct_answer": normalize_answer(question["correct_answer"]),
                "correct": is_correct,
                "module": question.get("module") or "General",
            }
        )

        module = modules.setdefault(
            question.get("module") or "General", {"correct": 0, "total": 0}
        )
        module["total"] += 1
        module["correct"] += is_correct

    total = max(len(answers), required)
    score = correct / total * 100
    passed = score >= threshold

    by_module = [
        {
            "module": name,
            "correct": stats["correct"],
            "total": stats["total"],
            "percentage": round_score(stats["correct"] / stats["total"] * 100),
        }
        for name, stats in sorted(modules.items())
    ]

    if passed:
        message = "Congratulations! You passed the quiz and can now vote."
    else:
        message = (
            f"You need at least {threshold:g}% to pass. "
            "Review the learning module and try again."
        )

    return {
        "score": score,
        "score_display": round_score(score),
        "passed": passed,
        "correct_answers": correct,
        "total_questions": total,
        "unanswered": total - len(answers),
        "details": details,
        "by_module": by_module,
        "message": message,
    }


# ============================================
# DATABASE OPERATIONS
# ============================================


async def _load_question_bank(
    conn: asyncpg.Connection, session_id: UUID
) -> list[dict[str, Any]]:
    """Active questions of the session, or the module bank if it has none."""
    rows = await conn.fetch(
        f"""
        SELECT {QUESTION_COLUMNS}
        FROM quiz_questions
        WHERE session_id = $1 AND active = TRUE
        ORDER BY created_at, id
        """,
        str(session_id),
    )
    if not rows:
        rows = await conn.fetch(
            f"""
            SELECT {QUESTION_COLUMNS}
            FROM quiz_questions
            WHERE session_id IS NULL AND active = TRUE
            ORDER BY module, created_at, id
            """
        )
    return [_parse_question_row(row) for row in rows]


async def _ensure_session(conn: asyncpg.Connection, session_id: UUID) -> None:
    exists = await conn.fetchval("SELECT 1 FROM sessions WHERE id = $1", str(session_id))
    if not exists:
        raise NotFoundError("Session not found", {"session_id": str(session_id)})


async def get_questions(
    conn: asyncpg.Connection, session_id: UUID, count: int | None = None
) -> list[dict[str, Any]]:
    """
    Questions for a participant, without correct answers or explanations.

    When ``count`` is smaller than the bank a random sample is returned.
    """
    await _ensure_session(conn, session_id)
    bank = await _load_question_bank(conn, session_id)

    if count is None:
        count = settings.QUIZ_QUESTION_COUNT
    if count is not None and 0 < count < len(bank):
        bank = random.sample(bank, count)

    return [
        {
            "id": q["id"],
            "question": q["question"],
            "options": q["options"],
            "module": q["module"],
            "difficulty": q["difficulty"],
        }
        for q in bank
    ]


async def submit_quiz(
    conn: asyncpg.Connection,
    session_id: UUID,
    participant_id: UUID,
    answers: Any,
) -> dict[str, Any]:
    """Grade an attempt, store it and update the participant's quiz flags."""
    parsed = parse_answers(answers)
    await _ensure_session(conn, session_id)

    enrollment = await get_enrollment(conn, session_id, participant_id)
    if not is_admitted(enrollment):
        audit_logger.log_gate_blocked(str(participant_id), str(session_id), "quiz")
        raise ForbiddenError("Join the session before taking the quiz")

    bank = await _load_question_bank(conn, session_id)
    required = required_question_count(len(bank), settings.QUIZ_QUESTION_COUNT)
    graded = grade_answers(bank, parsed, required, settings.QUIZ_PASS_THRESHOLD)

    async with conn.transaction():
        row = await conn.fetchrow(
            """
            INSERT INTO quiz_results (
                participant_id, session_id, score, passed, total_questions,
                correct_answers, details
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            RETURNING id, completed_at
            """,
            str(participant_id),
            str(session_id),
            graded["score"],
            graded["passed"],
            graded["total_questions"],
            graded["correct_answers"],
            json.dumps(graded["details"]),
        )
        await conn.execute(
            """
            UPDATE enrollments
            SET quiz_completed = TRUE, quiz_passed = $3, updated_at = CURRENT_TIMESTAMP
            WHERE session_id = $1 AND participant_id = $2
            """,
            str(session_id),
            str(participant_id),
            graded["passed"],
        )

    logger.info(
        f"Quiz submitted by {participant_id} for session {session_id}: "
        f"{graded['correct_answers']}/{graded['total_questions']} passed={graded['passed']}",
        extra={
            "extra_fields": {
                "event_type": "quiz_submitted",
                "session_id": str(session_id),
                "participant_id": str(participant_id),
                "score": graded["score"],
                "passed": graded["passed"],
            }
        },
    )

    return {
        "id": str(row["id"]),
        "session_id": str(session_id),
        "participant_id": str(participant_id),
        "completed_at": row["completed_at"] or datetime.now(timezone.utc),
        **graded,
    }


async def get_latest_result(
    conn: asyncpg.Connection, participant_id: UUID, session_id: UUID | None = None
) -> dict[str, Any] | None:
    """Most recent attempt, optionally within one session. None if none exist."""
    query = """
        SELECT id, participant_id, session_id, score, passed, total_questions,
               correct_answers, details, completed_at
        FROM quiz_results
        WHERE participant_id = $1
    """
    params: list[Any] = [str(participant_id)]
    if session_id:
        params.append(str(session_id))
        query += f" AND session_id = ${len(params)}"
    query += " ORDER BY completed_at DESC LIMIT 1"

    row = await conn.fetchrow(query, *params)
    if not row:
        return None

    result = dict(row)
    for field in ("id", "participant_id", "session_id"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    if isinstance(result.get("details"), str):
        result["details"] = json.loads(result["details"])
    result["score_display"] = round_score(result["score"])
    return result


def _parse_question_row(row: asyncpg.Record) -> dict[str, Any]:
    result = dict(row)
    result["id"] = str(result["id"])
    if result.get("session_id") is not None:
        result["session_id"] = str(result["session_id"])
    if isinstance(result.get("options"), str):
        result["options"] = json.loads(result["options"])
    return result
