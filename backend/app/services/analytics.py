"""
Analytics aggregator - per-test statistics, rank, leaderboards and the
student / batch dashboards.

Per-test statistics are accumulated while streaming completed attempts off
the cursor, so no list of scores is ever materialised.
"""

import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config.settings import settings
from ..models import OnlineTest, Question, TestAttempt
from ..utils import parse_datetime, round_half_up, utc_now
from .eligibility import Availability, classify, results_hidden, results_pending
from .exceptions import NotFoundError
from .grading import is_blank_answer, iter_leaf_questions, served_total_marks, source_questions
from .online_tests import OnlineTestService
from .roster import RosterService
from .sweeper import SweeperService

logger = logging.getLogger(__name__)

BUCKET_COUNT = 10


def bucket_index(percentage: float) -> int:
    """10-point-wide histogram bucket; 100% lands in the last one."""
    return max(0, min(int(percentage // 10), BUCKET_COUNT - 1))


def bucket_label(index: int) -> str:
    return f"{index * 10}-{index * 10 + 9}%"


class ScoreAccumulator:
    """Running statistics over completed attempts of one test."""

    def __init__(self, questions: List[Question], passing_percentage: float):
        self.passing_percentage = passing_percentage
        self.count = 0
        self.highest: Optional[float] = None
        self.lowest: Optional[float] = None
        self.average_score = 0.0
        self.average_percentage = 0.0
        self.passed = 0
        self.distribution = [0] * BUCKET_COUNT
        self.question_stats = {
            q.id: {"text": q.text, "type": q.type, "correct": 0, "total": 0}
            for q in iter_leaf_questions(questions)
        }
        self.batches: Dict[str, Dict[str, float]] = {}

    def add(self, attempt: Dict[str, Any]):
        score = attempt.get("score") or 0
        percentage = attempt.get("percentage") or 0

        self.count += 1
        self.highest = score if self.highest is None else max(self.highest, score)
        self.lowest = score if self.lowest is None else min(self.lowest, score)
        self.average_score += (score - self.average_score) / self.count
        self.average_percentage += (percentage - self.average_percentage) / self.count
        if percentage >= self.passing_percentage:
            self.passed += 1
        self.distribution[bucket_index(percentage)] += 1

        for answer in attempt.get("answers", []):
            stat = self.question_stats.get(answer.get("question_id"))
            if stat is not None:
                stat["total"] += 1
                if answer.get("is_correct"):
                    stat["correct"] += 1

        batch = self.batches.setdefault(attempt.get("batch_name") or "", {"count": 0, "average": 0.0})
        batch["count"] += 1
        batch["average"] += (percentage - batch["average"]) / batch["count"]

    def result(self) -> Dict[str, Any]:
        if self.count == 0:
            return {"completed_count": 0}

        return {
            "completed_count": self.count,
            "highest_score": self.highest,
            "lowest_score": self.lowest,
            "average_score": round(self.average_score, 1),
            "average_percentage": round_half_up(self.average_percentage),
            "passed_count": self.passed,
            "failed_count": self.count - self.passed,
            "pass_rate": round_half_up(self.passed / self.count * 100),
            "score_distribution": [
                {"range": bucket_label(i), "count": n} for i, n in enumerate(self.distribution)
            ],
            "question_analysis": [
                {
                    "question_id": qid,
                    "text": stat["text"][:100] + ("..." if len(stat["text"]) > 100 else ""),
                    "type": stat["type"],
                    "correct_count": stat["correct"],
                    "total_attempts": stat["total"],
                    "accuracy": round_half_up(stat["correct"] / stat["total"] * 100) if stat["total"] else 0,
                }
                for qid, stat in self.question_stats.items()
            ],
            "batch_performance": [
                {"batch": name, "avg_percentage": round_half_up(b["average"]), "student_count": b["count"]}
                for name, b in self.batches.items()
            ],
        }


def topic_map(questions: List[Question]) -> Dict[str, Optional[str]]:
    """Leaf question id -> topic; sub-questions inherit their passage's topic."""
    topics = {}
    for question in questions:
        if question.type == "comprehension":
            for sq in question.sub_questions:
                topics[sq.id] = question.topic
        else:
            topics[question.id] = question.topic
    return topics


class AnalyticsService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.tests = OnlineTestService(db)
        self.roster = RosterService(db)
        self.sweeper = SweeperService(db)

    # ============ PER TEST ============

    async def _stream_stats(self, test: OnlineTest) -> Dict[str, Any]:
        stats = ScoreAccumulator(test.questions, test.config.passing_percentage)
        cursor = self.db.test_attempts.find(
            {"test_id": test.test_id, "status": "completed"},
            {"_id": 0, "score": 1, "percentage": 1, "answers": 1, "batch_name": 1}
        )
        async for doc in cursor:
            stats.add(doc)
        return stats.result()

    async def test_analytics(self, test_id: str, user_email: str) -> Dict[str, Any]:
        test = await self.tests.get_owned_test(test_id, user_email)
        return await self._stream_stats(test)

    async def test_results(self, test_id: str, user_email: str) -> Dict[str, Any]:
        """Monitor view: who finished, who is still writing, who never started."""
        test = await self.tests.get_owned_test(test_id, user_email)
        await self.sweeper.sweep(test_id)

        students = await self.roster.students_in_batches(test.deployment.batches)
        attempts = {}
        async for doc in self.db.test_attempts.find({"test_id": test_id}, {"_id": 0, "questions": 0}):
            attempts[doc["student_phone"]] = doc

        now = utc_now()
        completed, in_progress, not_started = [], [], []
        for student in students:
            attempt = attempts.get(student["phone"])
            entry = {"name": student["name"], "phone": student["phone"], "batch": student["batch"]}
            if attempt is None:
                not_started.append(entry)
            elif attempt["status"] == "completed":
                completed.append({
                    **entry,
                    "score": attempt.get("score", 0),
                    "percentage": attempt.get("percentage", 0),
                    "submitted_at": attempt.get("submitted_at"),
                    "time_spent_ms": attempt.get("time_spent_ms", 0),
                    "grace_marks": attempt.get("grace_marks", 0),
                    "termination_reason": attempt.get("termination_reason"),
                })
            else:
                started = parse_datetime(attempt.get("started_at"))
                in_progress.append({
                    **entry,
                    "started_at": attempt.get("started_at"),
                    "time_elapsed_ms": int((now - started).total_seconds() * 1000) if started else 0,
                })

        completed.sort(key=lambda s: s["score"], reverse=True)
        total = len(students)
        summary = {
            "total_students": total,
            "in_progress_count": len(in_progress),
            "not_started_count": len(not_started),
            "participation_rate": round_half_up((len(completed) + len(in_progress)) / total * 100) if total else 0,
        }
        summary.update(await self._stream_stats(test))
        summary["completed_count"] = len(completed)

        return {
            "test": {
                "test_id": test.test_id,
                "title": test.title,
                "total_marks": test.total_marks,
                "status": test.status,
                "deployment": test.deployment.model_dump(),
                "config": test.config.model_dump(),
            },
            "completed": completed,
            "in_progress": in_progress,
            "not_started": not_started,
            "analytics": summary,
        }

    async def rank(self, test_id: str, score: float) -> int:
        """Strictly-higher scores + 1; tied students share a rank."""
        higher = await self.db.test_attempts.count_documents({
            "test_id": test_id,
            "status": "completed",
            "score": {"$gt": score},
        })
        return higher + 1

    async def leaderboard(self, test_id: str, current_phone: Optional[str] = None) -> List[Dict[str, Any]]:
        cursor = self.db.test_attempts.find(
            {"test_id": test_id, "status": "completed"},
            {"_id": 0, "student_name": 1, "student_phone": 1, "score": 1,
             "percentage": 1, "time_spent_ms": 1, "submitted_at": 1}
        ).sort([("score", -1), ("time_spent_ms", 1)]).limit(settings.LEADERBOARD_SIZE)

        board = []
        async for doc in cursor:
            board.append({
                "rank": len(board) + 1,
                "name": doc.get("student_name") or "Unknown Student",
                "score": doc.get("score", 0),
                "percentage": round_half_up(doc.get("percentage") or 0),
                "time_spent_ms": doc.get("time_spent_ms", 0),
                "submitted_at": doc.get("submitted_at"),
                "is_current_user": doc.get("student_phone") == current_phone,
            })
        return board

    # ============ STUDENT ============

    async def student_result(self, test_id: str, phone: str) -> Dict[str, Any]:
        """
        Graded review of the student's own attempt.

        Hidden or pending results come back with score and percentage set
        to None; the stored values are untouched.
        """
        doc = await self.db.test_attempts.find_one(
            {"test_id": test_id, "student_phone": phone, "status": "completed"},
            {"_id": 0}
        )
        if not doc:
            raise NotFoundError("No completed attempt found")
        test = await self.tests.get_test(test_id)
        attempt = TestAttempt.model_validate(doc)

        if not test.config.show_results:
            return {
                "score": None,
                "percentage": None,
                "total_marks": test.total_marks,
                "results_hidden": True,
                "message": "Results are not available for this test",
            }

        now = utc_now()
        end = parse_datetime(test.deployment.end_time)
        if results_pending(test.config.show_results_immediately, end, now):
            return {
                "score": None,
                "percentage": None,
                "total_marks": test.total_marks,
                "results_hidden": True,
                "results_pending": True,
                "message": f"Results will be declared after {test.deployment.end_time}",
            }

        served = source_questions(attempt.questions, test.questions)
        questions = {q.id: q for q in iter_leaf_questions(served)}
        topics = topic_map(served)

        review = []
        for answer in attempt.answers:
            question = questions.get(answer.question_id)
            if question is None:
                continue
            review.append({
                "question_id": answer.question_id,
                "text": question.text,
                "type": question.type,
                "marks": question.marks,
                "negative_marks": question.negative_marks,
                "options": question.options,
                "correct_indices": question.correct_indices,
                "correct_answer": question.fill_blank_answer,
                "number_range_min": question.number_range_min,
                "number_range_max": question.number_range_max,
                "solution_text": question.solution_text,
                "student_answer": answer.answer,
                "is_correct": answer.is_correct,
                "marks_awarded": answer.marks_awarded,
                "adjustment_marks": answer.adjustment_marks,
                "is_grace_awarded": answer.is_grace_awarded or question.is_grace,
                "topic": topics.get(answer.question_id),
            })

        topic_stats: Dict[str, Dict[str, float]] = {}
        for item in review:
            stats = topic_stats.setdefault(
                item["topic"] or "Uncategorized",
                {"correct": 0, "total": 0, "marks": 0, "max_marks": 0}
            )
            stats["total"] += 1
            stats["max_marks"] += item["marks"]
            if item["is_correct"]:
                stats["correct"] += 1
                stats["marks"] += item["marks_awarded"]

        correct = sum(1 for r in review if r["is_correct"])
        incorrect = sum(1 for r in review if not r["is_correct"] and not is_blank_answer(r["student_answer"]))

        topper = await self.db.test_attempts.find_one(
            {"test_id": test_id, "status": "completed"},
            {"_id": 0, "score": 1, "percentage": 1},
            sort=[("score", -1)]
        )
        assigned = await self.roster.students_in_batches(test.deployment.batches)
        total_students = len(assigned) or await self.db.test_attempts.count_documents(
            {"test_id": test_id, "status": "completed"}
        )

        return {
            "test": {
                "title": test.title,
                "description": test.description,
                "total_marks": served_total_marks(served) or test.total_marks,
                "duration_minutes": test.deployment.duration_minutes,
                "passing_percentage": test.config.passing_percentage,
            },
            "result": {
                "score": attempt.score,
                "percentage": attempt.percentage,
                "time_spent_ms": attempt.time_spent_ms,
                "submitted_at": attempt.submitted_at,
                "grace_marks": attempt.grace_marks,
                "grace_reason": attempt.grace_reason,
                "passed": attempt.percentage >= test.config.passing_percentage,
                "rank": await self.rank(test_id, attempt.score),
                "total_students": total_students,
                "topper_score": (topper or {}).get("score", attempt.score),
                "topper_percentage": round_half_up((topper or {}).get("percentage", attempt.percentage)),
                "correct_count": correct,
                "incorrect_count": incorrect,
                "unanswered_count": len(review) - correct - incorrect,
                "leaderboard": await self.leaderboard(test_id, phone),
            },
            "question_review": review,
            "topic_analysis": [
                {
                    "topic": topic,
                    **stats,
                    "percentage": round_half_up(stats["marks"] / stats["max_marks"] * 100) if stats["max_marks"] else 0,
                }
                for topic, stats in topic_stats.items()
            ],
        }

    async def student_analytics(self, phone: str, batch: Optional[str] = None) -> Dict[str, Any]:
        """Dashboard for one student: history, trend and standing within the batch."""
        student = await self.roster.get_student(phone)
        courses = (student or {}).get("courses", [])
        selected = batch if batch and batch in courses else None
        batch_filter = [selected] if selected else courses

        tests = []
        if batch_filter:
            async for doc in self.db.online_tests.find(
                {"status": "deployed", "deployment.batches": {"$in": batch_filter}},
                {"_id": 0, "test_id": 1, "title": 1, "total_marks": 1, "deployment": 1, "config": 1, "created_by": 1}
            ):
                tests.append(OnlineTest.model_validate(doc))

        test_ids = [t.test_id for t in tests]
        attempts = {}
        async for doc in self.db.test_attempts.find(
            {"student_phone": phone, "test_id": {"$in": test_ids}},
            {"_id": 0, "questions": 0, "answers": 0}
        ):
            attempts[doc["test_id"]] = doc

        now = utc_now()
        joined_at = parse_datetime((student or {}).get("created_at"))
        history = []
        missed = 0
        pending = 0
        for test in tests:
            attempt = attempts.get(test.test_id)
            end = parse_datetime(test.deployment.end_time)
            status = classify(
                joined_at,
                parse_datetime(test.deployment.start_time),
                end,
                attempt["status"] if attempt else None,
                now,
            )
            if status == Availability.COMPLETED:
                hidden = results_hidden(test.config.show_results, test.config.show_results_immediately, end, now)
                history.append({
                    "test_id": test.test_id,
                    "title": test.title,
                    "percentage": None if hidden else round_half_up(attempt.get("percentage") or 0),
                    "score": None if hidden else attempt.get("score", 0),
                    "total_marks": test.total_marks,
                    "date": attempt.get("submitted_at"),
                    "results_hidden": hidden,
                    "results_pending": results_pending(test.config.show_results_immediately, end, now),
                })
            elif status == Availability.EXPIRED:
                missed += 1
            elif status == Availability.AVAILABLE:
                pending += 1

        history.sort(key=lambda h: h["date"] or "")
        visible = [h for h in history if not h["results_hidden"]]

        average = round_half_up(sum(h["percentage"] for h in visible) / len(visible)) if visible else 0
        trend = "neutral"
        if len(visible) >= 2:
            current, previous = visible[-1]["percentage"], visible[-2]["percentage"]
            if current > previous:
                trend = "up"
            elif current < previous:
                trend = "down"

        standing = await self._batch_standing(phone, batch_filter, test_ids, visible)

        return {
            "total_tests": len(visible),
            "average_score": average,
            "recent_score": visible[-1]["percentage"] if visible else 0,
            "highest_score": max((h["percentage"] for h in visible), default=0),
            "missed": missed,
            "pending": pending,
            "trend": trend,
            "history": history[-10:],
            "batches": courses,
            "selected_batch": selected or "",
            **standing,
        }

    async def _batch_standing(
        self,
        phone: str,
        batches: List[str],
        test_ids: List[str],
        visible: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        classmates = await self.roster.students_in_batches(batches)
        names = {s["phone"]: s["name"] for s in classmates}
        standing = {
            "batch_highest_average": 0,
            "batch_rank": 0,
            "total_batch_students": len(classmates),
            "leaderboard": [],
            "test_comparison": [],
        }
        if not classmates or not test_ids:
            return standing

        per_student: Dict[str, List[float]] = {}
        per_test: Dict[str, Dict[str, float]] = {}
        async for doc in self.db.test_attempts.find(
            {"student_phone": {"$in": list(names)}, "test_id": {"$in": test_ids}, "status": "completed"},
            {"_id": 0, "student_phone": 1, "test_id": 1, "percentage": 1}
        ):
            percentage = doc.get("percentage") or 0
            per_student.setdefault(doc["student_phone"], []).append(percentage)
            stat = per_test.setdefault(doc["test_id"], {"highest": 0, "total": 0, "count": 0})
            stat["highest"] = max(stat["highest"], percentage)
            stat["total"] += percentage
            stat["count"] += 1

        rankings = sorted(
            (
                {
                    "name": names.get(p) or "Unknown",
                    "phone": p,
                    "average": round_half_up(sum(v) / len(v)),
                    "tests_attempted": len(v),
                }
                for p, v in per_student.items()
            ),
            key=lambda r: r["average"],
            reverse=True,
        )
        my_index = next((i for i, r in enumerate(rankings) if r["phone"] == phone), None)

        standing["batch_highest_average"] = rankings[0]["average"] if rankings else 0
        standing["batch_rank"] = my_index + 1 if my_index is not None else len(rankings) + 1
        standing["leaderboard"] = [
            {**r, "phone": r["phone"] if r["phone"] == phone else "***"}
            for r in rankings[:settings.LEADERBOARD_SIZE]
        ]
        standing["test_comparison"] = [
            {
                "test_id": h["test_id"],
                "title": h["title"],
                "student_score": h["percentage"],
                "highest_score": round_half_up(per_test[h["test_id"]]["highest"]) if h["test_id"] in per_test else h["percentage"],
                "average_score": round_half_up(per_test[h["test_id"]]["total"] / per_test[h["test_id"]]["count"]) if h["test_id"] in per_test else h["percentage"],
            }
            for h in visible
        ]
        return standing

    # ============ BATCH ============

    async def batch_analytics(self, batch: str) -> Dict[str, Any]:
        """Per student x test status grid for one batch."""
        students = await self.roster.students_in_batches([batch])
        if not students:
            return {"batch": batch, "tests": [], "analytics": []}

        tests = await self.db.online_tests.find(
            {"deployment.batches": batch, "status": {"$in": ["deployed", "completed"]}},
            {"_id": 0, "test_id": 1, "title": 1, "total_marks": 1, "deployment": 1}
        ).sort("deployment.start_time", -1).to_list(1000)
        test_ids = [t["test_id"] for t in tests]
        phones = [s["phone"] for s in students]

        attempts: Dict[tuple, Dict[str, Any]] = {}
        test_stats: Dict[str, Dict[str, float]] = {}
        async for doc in self.db.test_attempts.find(
            {"test_id": {"$in": test_ids}, "student_phone": {"$in": phones}},
            {"_id": 0, "test_id": 1, "student_phone": 1, "score": 1,
             "percentage": 1, "status": 1, "submitted_at": 1}
        ):
            attempts[(doc["test_id"], doc["student_phone"])] = doc
            if doc["status"] == "completed":
                stat = test_stats.setdefault(doc["test_id"], {"highest": 0, "total": 0, "count": 0})
                stat["highest"] = max(stat["highest"], doc.get("score") or 0)
                stat["total"] += doc.get("score") or 0
                stat["count"] += 1

        def summary(test_id):
            stat = test_stats.get(test_id)
            if not stat:
                return {"highest_score": 0, "average_score": 0}
            return {"highest_score": stat["highest"], "average_score": round(stat["total"] / stat["count"], 2)}

        now = utc_now()
        analytics = []
        for student in students:
            joined_at = parse_datetime(student.get("created_at"))
            rows = []
            for test in tests:
                attempt = attempts.get((test["test_id"], student["phone"]))
                deployment = test.get("deployment", {})
                if attempt:
                    status = attempt["status"]
                else:
                    availability = classify(
                        joined_at,
                        parse_datetime(deployment.get("start_time")),
                        parse_datetime(deployment.get("end_time")),
                        None,
                        now,
                    )
                    status = {
                        Availability.EXPIRED: "missed",
                        Availability.NOT_ENROLLED: "not_enrolled",
                    }.get(availability, "pending")
                rows.append({
                    "test_id": test["test_id"],
                    "status": status,
                    "score": attempt.get("score") if attempt else None,
                    "percentage": attempt.get("percentage") if attempt else None,
                    "submitted_at": attempt.get("submitted_at") if attempt else None,
                    **summary(test["test_id"]),
                })

            attempted = [r for r in rows if r["status"] in ("completed", "in_progress")]
            average = sum(r["percentage"] or 0 for r in attempted) / len(attempted) if attempted else 0
            analytics.append({
                "student": {
                    "name": student["name"],
                    "phone_number": student["phone"],
                    "joined_at": student.get("created_at"),
                },
                "stats": {
                    "avg_test_percentage": round(average, 2),
                    "tests_attempted": len(attempted),
                    "tests_missed": sum(1 for r in rows if r["status"] == "missed"),
                },
                "tests": rows,
            })

        return {
            "batch": batch,
            "tests": [{**t, **summary(t["test_id"])} for t in tests],
            "analytics": analytics,
        }
