"""
Re-grading & adjustment pipeline.

Editing a test's questions re-grades every completed attempt against the
edited definitions. Attempts are persisted one by one; a failure on one
attempt is logged and counted without stopping the others.
"""

import logging
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models import Answer, MarkAdjustment, Question, TestAttempt
from ..utils import normalize_phone, to_iso, utc_now
from .exceptions import ConflictError, NotFoundError
from .grading import compute_percentage, compute_score, grade_answers, served_total_marks, source_questions
from .online_tests import OnlineTestService, questions_to_docs, validate_questions_for_deploy

logger = logging.getLogger(__name__)


def _merge_fields(snapshot, edited):
    """Edited fields win; ``is_grace`` is always taken from the edit."""
    data = snapshot.model_dump()
    data.update(edited.model_dump(exclude_unset=True))
    data["is_grace"] = edited.is_grace
    return data


def merge_question_snapshot(snapshot: List[Question], edited: List[Question]) -> List[Question]:
    """
    Refresh an attempt's served questions from an edited question list.

    The snapshot keeps its own order and membership (it may be a per-student
    subset); each question found in the edit is overwritten field by field,
    sub-questions matched by id.
    """
    edited_map = {q.id: q for q in edited}
    merged = []
    for question in snapshot:
        update = edited_map.get(question.id)
        if update is None:
            merged.append(question)
            continue

        data = _merge_fields(question, update)
        if update.type == "comprehension":
            old_subs = {sq.id: sq for sq in question.sub_questions}
            data["sub_questions"] = [
                _merge_fields(old_subs[sq.id], sq) if sq.id in old_subs else sq.model_dump()
                for sq in update.sub_questions
            ]
        merged.append(Question.model_validate(data))
    return merged


class RegradingService:
    """Staff-side re-grading and manual mark adjustment."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.tests = OnlineTestService(db)

    async def edit_questions(
        self,
        test_id: str,
        user_email: str,
        questions: List[Question],
        grace_marks: float = 0,
        grace_reason: str = "",
    ) -> Dict[str, Any]:
        """
        Store edited questions and re-grade all completed attempts.

        ``grace_marks``/``grace_reason`` overwrite the attempt's previous
        values: an edit that omits them resets grace marks to 0.

        Returns:
            {"test": {...}, "regraded": int, "failed": int}
        """
        test = await self.tests.get_owned_test(test_id, user_email)
        if test.status != "draft":
            validate_questions_for_deploy(questions)

        now = to_iso(utc_now())
        await self.db.online_tests.update_one(
            {"test_id": test_id},
            {"$set": {
                "questions": questions_to_docs(questions),
                "total_marks": served_total_marks(questions),
                "updated_at": now,
            }}
        )
        test = await self.tests.get_test(test_id)

        regraded = 0
        failed = 0
        async for doc in self.db.test_attempts.find({"test_id": test_id, "status": "completed"}, {"_id": 0}):
            attempt_id = doc.get("attempt_id")
            try:
                attempt = TestAttempt.model_validate(doc)
                snapshot = merge_question_snapshot(attempt.questions, questions) if attempt.questions else []
                served = source_questions(snapshot, test.questions)

                graded = grade_answers(attempt.answers, served)
                score = compute_score(graded, grace_marks)
                percentage = compute_percentage(score, served_total_marks(served), test.total_marks)

                await self.db.test_attempts.update_one(
                    {"attempt_id": attempt.attempt_id},
                    {"$set": {
                        "questions": questions_to_docs(snapshot),
                        "answers": [a.model_dump() for a in graded],
                        "score": score,
                        "percentage": percentage,
                        "grace_marks": grace_marks,
                        "grace_reason": grace_reason,
                        "updated_at": now,
                    }}
                )
                regraded += 1
            except Exception as e:
                failed += 1
                logger.error(f"Failed to re-grade attempt {attempt_id}: {e}", exc_info=True)

        logger.info(f"Re-graded test {test_id}: {regraded} attempts updated, {failed} failed")
        return {"test": test.model_dump(), "regraded": regraded, "failed": failed}

    async def get_student_attempt(self, test_id: str, user_email: str, phone: str) -> Dict[str, Any]:
        """Full attempt with its served questions, for staff review."""
        test = await self.tests.get_owned_test(test_id, user_email)
        doc = await self.db.test_attempts.find_one(
            {"test_id": test_id, "student_phone": normalize_phone(phone)},
            {"_id": 0}
        )
        if not doc:
            raise NotFoundError("Attempt not found")
        attempt = TestAttempt.model_validate(doc)
        served = source_questions(attempt.questions, test.questions)
        return {
            "attempt": attempt.model_dump(exclude={"questions"}),
            "questions": questions_to_docs(served),
            "total_marks": served_total_marks(served) or test.total_marks,
        }

    async def adjust_marks(
        self,
        test_id: str,
        user_email: str,
        phone: str,
        adjustments: List[MarkAdjustment],
    ) -> Dict[str, Any]:
        """Set per-answer adjustment marks on a completed attempt and rescore it."""
        test = await self.tests.get_owned_test(test_id, user_email)
        doc = await self.db.test_attempts.find_one(
            {"test_id": test_id, "student_phone": normalize_phone(phone)},
            {"_id": 0}
        )
        if not doc:
            raise NotFoundError("Attempt not found")
        attempt = TestAttempt.model_validate(doc)
        if attempt.status != "completed":
            raise ConflictError("Marks can only be adjusted on a submitted attempt")

        by_question = {adj.question_id: adj.adjustment_marks for adj in adjustments}
        answers = [
            a.model_copy(update={"adjustment_marks": by_question[a.question_id]})
            if a.question_id in by_question else a
            for a in attempt.answers
        ]
        answered = {a.question_id for a in answers}
        for question_id, marks in by_question.items():
            # an unanswered question can still be adjusted
            if question_id not in answered:
                answers.append(Answer(question_id=question_id, adjustment_marks=marks))

        served = source_questions(attempt.questions, test.questions)
        score = compute_score(answers, attempt.grace_marks)
        percentage = compute_percentage(score, served_total_marks(served), test.total_marks)

        await self.db.test_attempts.update_one(
            {"attempt_id": attempt.attempt_id},
            {"$set": {
                "answers": [a.model_dump() for a in answers],
                "score": score,
                "percentage": percentage,
                "updated_at": to_iso(utc_now()),
            }}
        )
        logger.info(f"Adjusted marks on attempt {attempt.attempt_id}: score={score}")
        return {"score": score, "percentage": percentage, "answers": [a.model_dump() for a in answers]}
