"""
Attempt lifecycle service - start, answer, autosave, submit.

An attempt moves in_progress -> completed exactly once. Every transition to
completed goes through ``completion_update`` so a student submit, a forced
submit after too many resumes and the sweeper all grade the same way.
"""

import logging
import random
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from ..config.settings import settings
from ..models import (
    Answer,
    AnswerItem,
    OnlineTest,
    Question,
    TERMINATION_MAX_RESUMES,
    TERMINATION_NORMAL,
    TestAttempt,
)
from ..utils import normalize_phone, parse_datetime, to_iso, utc_now
from .eligibility import Availability, classify, ensure_can_start, results_hidden, results_pending
from .exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .grading import score_attempt, served_total_marks, source_questions
from .online_tests import OnlineTestService
from .roster import RosterService

logger = logging.getLogger(__name__)

# Never sent to a student while taking a test
ANSWER_KEY_FIELDS = {
    "correct_indices",
    "fill_blank_answer",
    "number_range_min",
    "number_range_max",
    "solution_text",
    "is_grace",
}


def strip_answer_keys(questions: List[Question]) -> List[Dict[str, Any]]:
    stripped = []
    for question in questions:
        doc = question.model_dump(exclude=ANSWER_KEY_FIELDS)
        doc["sub_questions"] = [
            sq.model_dump(exclude=ANSWER_KEY_FIELDS) for sq in question.sub_questions
        ]
        stripped.append(doc)
    return stripped


def pick_served_questions(test: OnlineTest, rng: Optional[random.Random] = None) -> List[Question]:
    """Questions served to one student: shuffled and/or a random subset per config."""
    rng = rng or random
    questions = list(test.questions)
    limit = test.config.max_questions_to_attempt

    # a subset has to be random, so it always shuffles
    if limit or test.config.shuffle_questions:
        rng.shuffle(questions)
    if limit and limit > 0:
        questions = questions[:limit]
    return questions


def elapsed_ms(attempt: TestAttempt, now: datetime) -> int:
    started = parse_datetime(attempt.started_at)
    if started is None:
        return 0
    return max(0, int((now - started).total_seconds() * 1000))


def merge_answers(existing: List[Answer], incoming: List[AnswerItem]) -> List[Answer]:
    """Merge raw answers by question id; merged answers are ungraded until submit."""
    merged = {a.question_id: a for a in existing}
    for item in incoming:
        previous = merged.get(item.question_id)
        merged[item.question_id] = Answer(
            question_id=item.question_id,
            answer=item.answer,
            time_taken=item.time_taken or (previous.time_taken if previous else 0),
        )
    return list(merged.values())


def completion_update(
    attempt: TestAttempt,
    test: OnlineTest,
    now: datetime,
    termination_reason: str,
    time_spent_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Grade every stored answer and build the $set that completes the attempt."""
    questions = source_questions(attempt.questions, test.questions)
    graded, score, percentage = score_attempt(
        attempt.answers,
        questions,
        grace_marks=attempt.grace_marks,
        fallback_total=test.total_marks,
    )
    return {
        "answers": [a.model_dump() for a in graded],
        "score": score,
        "percentage": percentage,
        "time_spent_ms": time_spent_ms or attempt.time_spent_ms or elapsed_ms(attempt, now),
        "status": "completed",
        "submitted_at": to_iso(now),
        "termination_reason": termination_reason,
        "updated_at": to_iso(now),
    }


class AttemptService:
    """Student-facing operations on test attempts."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.tests = OnlineTestService(db)
        self.roster = RosterService(db)

    # ============ LOOKUPS ============

    async def find_attempt(self, test_id: str, phone: str) -> Optional[TestAttempt]:
        doc = await self.db.test_attempts.find_one(
            {"test_id": test_id, "student_phone": phone},
            {"_id": 0}
        )
        return TestAttempt.model_validate(doc) if doc else None

    async def _require_active(self, test_id: str, phone: str) -> TestAttempt:
        attempt = await self.find_attempt(test_id, phone)
        if attempt is None:
            raise NotFoundError("No active attempt found")
        if attempt.status == "completed":
            raise ConflictError("You have already completed this test")
        return attempt

    async def _check_access(self, test: OnlineTest, phone: str) -> Optional[Dict]:
        """Return the roster entry when the student may take the test."""
        student = await self.roster.get_student(phone)
        courses = (student or {}).get("courses", [])
        if any(c in test.deployment.batches for c in courses):
            return student
        if any(normalize_phone(s.phone_number) == phone for s in test.deployment.students):
            return student
        raise ForbiddenError("You do not have access to this test")

    # ============ LISTING ============

    async def list_for_student(self, phone: str, batch: Optional[str] = None) -> Dict[str, List[Dict]]:
        buckets = {a.value: [] for a in Availability}

        student = await self.roster.get_student(phone)
        if not student or not student.get("courses"):
            return buckets

        courses = student["courses"]
        batch_filter = [batch] if batch and batch in courses else courses

        tests = await self.db.online_tests.find(
            {"status": "deployed", "deployment.batches": {"$in": batch_filter}},
            {"_id": 0}
        ).sort("deployment.start_time", -1).to_list(1000)

        test_ids = [t["test_id"] for t in tests]
        attempts = {}
        async for doc in self.db.test_attempts.find(
            {"test_id": {"$in": test_ids}, "student_phone": phone},
            {"_id": 0, "questions": 0}
        ):
            attempts[doc["test_id"]] = doc

        now = utc_now()
        joined_at = parse_datetime(student.get("created_at"))
        for doc in tests:
            test = OnlineTest.model_validate(doc)
            start = parse_datetime(test.deployment.start_time)
            end = parse_datetime(test.deployment.end_time)
            attempt = attempts.get(test.test_id)
            hidden = results_hidden(
                test.config.show_results, test.config.show_results_immediately, end, now
            )

            status = classify(joined_at, start, end, attempt["status"] if attempt else None, now)
            buckets[status.value].append({
                "test_id": test.test_id,
                "title": test.title,
                "description": test.description,
                "total_marks": test.total_marks,
                "question_count": len(test.questions),
                "duration_minutes": test.deployment.duration_minutes,
                "start_time": test.deployment.start_time,
                "end_time": test.deployment.end_time,
                "config": test.config.model_dump(),
                "attempt_status": attempt["status"] if attempt else "not_started",
                "score": None if hidden or not attempt else attempt.get("score"),
                "percentage": None if hidden or not attempt else attempt.get("percentage"),
                "submitted_at": attempt.get("submitted_at") if attempt else None,
                "results_hidden": hidden,
                "results_pending": results_pending(test.config.show_results_immediately, end, now),
            })
        return buckets

    # ============ TAKING A TEST ============

    async def get_test_for_student(self, test_id: str, phone: str) -> Dict[str, Any]:
        """
        Serve a deployed test without its answer keys.

        Reopening an in-progress attempt counts as a resume; once the resume
        limit is exceeded the attempt is submitted with whatever answers it
        holds and the student is refused.
        """
        test = await self.tests.get_deployed_test(test_id)
        await self._check_access(test, phone)

        now = utc_now()
        attempt = await self.find_attempt(test_id, phone)

        if attempt and attempt.status == "in_progress":
            resume_count = attempt.resume_count + 1
            if resume_count > settings.MAX_RESUMES:
                await self._complete(attempt, test, now, TERMINATION_MAX_RESUMES)
                logger.info(f"Attempt {attempt.attempt_id} force-submitted after {resume_count} resumes")
                raise ForbiddenError("Maximum resume limit exceeded. Test has been automatically submitted.")
            await self.db.test_attempts.update_one(
                {"attempt_id": attempt.attempt_id},
                {"$set": {"resume_count": resume_count, "updated_at": to_iso(now)}}
            )
            attempt.resume_count = resume_count

        start = parse_datetime(test.deployment.start_time)
        if attempt is None and start and now < start:
            raise ValidationError("Test has not started yet")

        questions = source_questions(attempt.questions if attempt else [], test.questions)
        return {
            "test": {
                "test_id": test.test_id,
                "title": test.title,
                "description": test.description,
                "total_marks": served_total_marks(questions) or test.total_marks,
                "duration_minutes": test.deployment.duration_minutes,
                "start_time": test.deployment.start_time,
                "end_time": test.deployment.end_time,
                "config": test.config.model_dump(),
                "questions": strip_answer_keys(questions),
            },
            "attempt": {
                "attempt_id": attempt.attempt_id,
                "status": attempt.status,
                "started_at": attempt.started_at,
                "answers": [{"question_id": a.question_id, "answer": a.answer} for a in attempt.answers],
                "time_spent_ms": attempt.time_spent_ms,
                "warning_count": attempt.warning_count,
            } if attempt else None,
        }

    async def start_attempt(self, test_id: str, phone: str) -> Dict[str, Any]:
        """
        Open an attempt, or resume the existing in-progress one.

        Returns:
            {"attempt": {...}, "questions": [...], "resumed": bool}
        """
        test = await self.tests.get_deployed_test(test_id)
        student = await self._check_access(test, phone)

        existing = await self.find_attempt(test_id, phone)
        if existing:
            if existing.status == "completed":
                raise ConflictError("You have already completed this test")
            served = source_questions(existing.questions, test.questions)
            return {
                "attempt": existing.model_dump(exclude={"questions"}),
                "questions": strip_answer_keys(served),
                "resumed": True,
            }

        now = utc_now()
        ensure_can_start(
            parse_datetime(test.deployment.start_time),
            parse_datetime(test.deployment.end_time),
            now,
        )

        courses = (student or {}).get("courses", [])
        batch_name = next((c for c in courses if c in test.deployment.batches), courses[0] if courses else "")
        served = pick_served_questions(test)
        attempt = TestAttempt(
            attempt_id=str(uuid.uuid4()),
            test_id=test_id,
            student_phone=phone,
            student_name=(student or {}).get("name") or "Unknown",
            batch_name=batch_name,
            status="in_progress",
            started_at=to_iso(now),
            questions=served,
            created_at=to_iso(now),
            updated_at=to_iso(now),
        )

        try:
            await self.db.test_attempts.insert_one(attempt.model_dump())
        except DuplicateKeyError:
            raise ConflictError("An attempt for this test already exists")

        logger.info(f"Attempt {attempt.attempt_id} started: test={test_id} student={phone}")
        return {
            "attempt": attempt.model_dump(exclude={"questions"}),
            "questions": strip_answer_keys(served),
            "resumed": False,
        }

    async def submit_answer(
        self,
        test_id: str,
        phone: str,
        question_id: str,
        value,
        time_taken: float = 0,
    ) -> Dict[str, Any]:
        """Save one answer (ungraded), opening the attempt on the first save."""
        attempt = await self.find_attempt(test_id, phone)
        if attempt is None:
            await self.start_attempt(test_id, phone)
            attempt = await self.find_attempt(test_id, phone)
        if attempt.status == "completed":
            raise ConflictError("You have already completed this test")

        answers = merge_answers(
            attempt.answers,
            [AnswerItem(question_id=question_id, answer=value, time_taken=time_taken)]
        )
        result = await self.db.test_attempts.update_one(
            {"attempt_id": attempt.attempt_id, "status": "in_progress"},
            {"$set": {
                "answers": [a.model_dump() for a in answers],
                "updated_at": to_iso(utc_now()),
            }}
        )
        if result.matched_count == 0:
            raise ConflictError("You have already completed this test")
        return {"attempt_id": attempt.attempt_id, "question_id": question_id, "saved": True}

    async def autosave_answers(
        self,
        test_id: str,
        phone: str,
        answers: List[AnswerItem],
        time_spent_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        attempt = await self._require_active(test_id, phone)
        updates = {
            "answers": [a.model_dump() for a in merge_answers(attempt.answers, answers)],
            "updated_at": to_iso(utc_now()),
        }
        if time_spent_ms:
            updates["time_spent_ms"] = time_spent_ms

        result = await self.db.test_attempts.update_one(
            {"attempt_id": attempt.attempt_id, "status": "in_progress"},
            {"$set": updates}
        )
        if result.matched_count == 0:
            raise ConflictError("You have already completed this test")
        return {"success": True, "saved_count": len(answers)}

    async def record_warning(self, test_id: str, phone: str) -> int:
        attempt = await self._require_active(test_id, phone)
        await self.db.test_attempts.update_one(
            {"attempt_id": attempt.attempt_id, "status": "in_progress"},
            {"$inc": {"warning_count": 1}, "$set": {"updated_at": to_iso(utc_now())}}
        )
        return attempt.warning_count + 1

    async def submit_attempt(
        self,
        test_id: str,
        phone: str,
        answers: Optional[List[AnswerItem]] = None,
        time_spent_ms: Optional[int] = None,
        warning_count: Optional[int] = None,
        termination_reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Grade and complete the student's attempt.

        Allowed past the end of the window: a started attempt may always be
        finished. Score fields are None while results are hidden or pending.
        """
        test = await self.tests.get_test(test_id)
        attempt = await self._require_active(test_id, phone)

        if answers:
            attempt.answers = merge_answers(attempt.answers, answers)

        now = utc_now()
        extra = {"warning_count": warning_count} if warning_count is not None else {}
        update = await self._complete(
            attempt, test, now, termination_reason or TERMINATION_NORMAL, time_spent_ms, extra
        )

        logger.info(
            f"Attempt {attempt.attempt_id} submitted: score={update['score']} "
            f"percentage={update['percentage']}"
        )

        total_marks = served_total_marks(source_questions(attempt.questions, test.questions)) or test.total_marks
        end = parse_datetime(test.deployment.end_time)
        hidden = results_hidden(test.config.show_results, test.config.show_results_immediately, end, now)
        return {
            "message": "Test submitted successfully",
            "score": None if hidden else update["score"],
            "total_marks": None if hidden else total_marks,
            "percentage": None if hidden else update["percentage"],
            "passed": None if hidden else update["percentage"] >= test.config.passing_percentage,
            "results_hidden": hidden,
            "results_pending": results_pending(test.config.show_results_immediately, end, now),
        }

    async def _complete(
        self,
        attempt: TestAttempt,
        test: OnlineTest,
        now: datetime,
        termination_reason: str,
        time_spent_ms: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        update = completion_update(attempt, test, now, termination_reason, time_spent_ms)
        update.update(extra or {})
        result = await self.db.test_attempts.update_one(
            {"attempt_id": attempt.attempt_id, "status": "in_progress"},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictError("You have already completed this test")
        return update
