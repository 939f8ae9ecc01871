"""
Student routes for taking online tests.

Endpoints:
- GET /api/student/online-tests
- GET /api/student/online-tests/{test_id}
- POST /api/student/online-tests/{test_id}/start
- PUT /api/student/online-tests/{test_id}/answers/{question_id}
- PATCH /api/student/online-tests/{test_id}/answers
- POST /api/student/online-tests/{test_id}/submit
- POST /api/student/online-tests/{test_id}/warning
- GET /api/student/online-tests/{test_id}/result
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models import AnswerSave, AutosaveRequest, SubmitRequest
from ..services import AnalyticsService, AttemptService
from .auth import SessionAuth
from .errors import service_errors


def create_student_test_routes(db: AsyncIOMotorDatabase) -> APIRouter:
    """Create student online-test routes with database connection."""

    router = APIRouter(prefix="/api/student/online-tests", tags=["student-online-tests"])
    auth = SessionAuth(db)
    attempts = AttemptService(db)
    analytics = AnalyticsService(db)

    @router.get("")
    async def list_tests(batch: Optional[str] = None, phone: str = Depends(auth.student)):
        with service_errors("fetch tests"):
            return await attempts.list_for_student(phone, batch)

    @router.get("/{test_id}")
    async def get_test(test_id: str, phone: str = Depends(auth.student)):
        with service_errors("fetch test"):
            return await attempts.get_test_for_student(test_id, phone)

    @router.post("/{test_id}/start")
    async def start_test(test_id: str, response: Response, phone: str = Depends(auth.student)):
        with service_errors("start test"):
            result = await attempts.start_attempt(test_id, phone)
            response.status_code = 200 if result["resumed"] else 201
            result["message"] = "Resuming existing attempt" if result["resumed"] else "Test started successfully"
            return result

    @router.put("/{test_id}/answers/{question_id}")
    async def save_answer(
        test_id: str,
        question_id: str,
        payload: AnswerSave,
        phone: str = Depends(auth.student),
    ):
        with service_errors("save answer"):
            return await attempts.submit_answer(
                test_id, phone, question_id, payload.answer, payload.time_taken
            )

    @router.patch("/{test_id}/answers")
    async def autosave(test_id: str, payload: AutosaveRequest, phone: str = Depends(auth.student)):
        """Periodic save without grading."""
        with service_errors("auto-save"):
            return await attempts.autosave_answers(test_id, phone, payload.answers, payload.time_spent_ms)

    @router.post("/{test_id}/submit")
    async def submit_test(test_id: str, payload: SubmitRequest, phone: str = Depends(auth.student)):
        with service_errors("submit test"):
            return await attempts.submit_attempt(
                test_id,
                phone,
                answers=payload.answers,
                time_spent_ms=payload.time_spent_ms,
                warning_count=payload.warning_count,
                termination_reason=payload.termination_reason,
            )

    @router.post("/{test_id}/warning")
    async def record_warning(test_id: str, phone: str = Depends(auth.student)):
        with service_errors("record warning"):
            count = await attempts.record_warning(test_id, phone)
            return {"success": True, "warning_count": count}

    @router.get("/{test_id}/result")
    async def get_result(test_id: str, phone: str = Depends(auth.student)):
        with service_errors("fetch result"):
            return await analytics.student_result(test_id, phone)

    return router
