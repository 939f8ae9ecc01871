"""
Staff routes for online tests.

Endpoints:
- GET/POST /api/admin/online-tests
- GET/PUT/DELETE /api/admin/online-tests/{test_id}
- POST /api/admin/online-tests/{test_id}/clone
- POST /api/admin/online-tests/{test_id}/deploy
- POST /api/admin/online-tests/{test_id}/complete
- PUT /api/admin/online-tests/{test_id}/questions
- POST /api/admin/online-tests/{test_id}/reassign
- DELETE /api/admin/online-tests/{test_id}/attempts
- POST /api/admin/online-tests/{test_id}/auto-complete
- GET /api/admin/online-tests/{test_id}/results
- GET /api/admin/online-tests/{test_id}/analytics
- GET/POST /api/admin/online-tests/{test_id}/students/{phone}
"""

from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models import (
    AdjustMarksRequest,
    DeployRequest,
    QuestionsEdit,
    ReassignRequest,
    ResetAttemptsRequest,
    TestCreate,
    TestUpdate,
)
from ..services import (
    AnalyticsService,
    OnlineTestService,
    RegradingService,
    SweeperService,
)
from ..utils import normalize_phone
from .auth import SessionAuth
from .errors import service_errors


def create_admin_test_routes(db: AsyncIOMotorDatabase) -> APIRouter:
    """Create staff online-test routes with database connection."""

    router = APIRouter(prefix="/api/admin/online-tests", tags=["admin-online-tests"])
    auth = SessionAuth(db)
    tests = OnlineTestService(db)
    regrader = RegradingService(db)
    sweeper = SweeperService(db)
    analytics = AnalyticsService(db)

    @router.get("")
    async def list_tests(
        status: Optional[str] = None,
        folder_id: Optional[str] = None,
        user_email: str = Depends(auth.staff),
    ):
        """List the caller's tests, optionally by comma-separated status and folder."""
        with service_errors("fetch tests"):
            statuses = [s for s in (status or "").split(",") if s]
            return await tests.list_tests(
                user_email,
                statuses=statuses,
                folder_id=folder_id or None,
                filter_folder=folder_id is not None,
            )

    @router.post("", status_code=201)
    async def create_test(payload: TestCreate, user_email: str = Depends(auth.staff)):
        with service_errors("create test"):
            return await tests.create_test(user_email, payload)

    @router.get("/{test_id}")
    async def get_test(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("fetch test"):
            return (await tests.get_owned_test(test_id, user_email)).model_dump()

    @router.put("/{test_id}")
    async def update_test(test_id: str, payload: TestUpdate, user_email: str = Depends(auth.staff)):
        with service_errors("update test"):
            return await tests.update_test(test_id, user_email, payload)

    @router.delete("/{test_id}")
    async def delete_test(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("delete test"):
            deleted = await tests.delete_test(test_id, user_email)
            return {"message": "Test deleted successfully", "deleted_attempts": deleted}

    @router.post("/{test_id}/clone", status_code=201)
    async def clone_test(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("clone test"):
            return await tests.clone_test(test_id, user_email)

    @router.post("/{test_id}/deploy")
    async def deploy_test(test_id: str, payload: DeployRequest, user_email: str = Depends(auth.staff)):
        with service_errors("deploy test"):
            test = await tests.deploy_test(test_id, user_email, payload)
            return {"message": "Test deployed successfully", "test": test}

    @router.post("/{test_id}/complete")
    async def complete_test(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("complete test"):
            return await tests.complete_test(test_id, user_email)

    @router.put("/{test_id}/questions")
    async def edit_questions(test_id: str, payload: QuestionsEdit, user_email: str = Depends(auth.staff)):
        """Replace the questions and re-grade every completed attempt."""
        with service_errors("update questions"):
            return await regrader.edit_questions(
                test_id,
                user_email,
                payload.questions,
                grace_marks=payload.grace_marks,
                grace_reason=payload.grace_reason,
            )

    @router.post("/{test_id}/reassign")
    async def reassign_test(test_id: str, payload: ReassignRequest, user_email: str = Depends(auth.staff)):
        with service_errors("reassign test"):
            window = await tests.reassign_window(
                test_id, user_email, payload.new_start_time, payload.new_end_time
            )
            return {"message": "Test reassigned successfully", **window}

    @router.delete("/{test_id}/attempts")
    async def reset_attempts(test_id: str, payload: ResetAttemptsRequest, user_email: str = Depends(auth.staff)):
        with service_errors("reset attempts"):
            phones = [normalize_phone(p) for p in payload.phones]
            deleted = await tests.reset_attempts(test_id, user_email, phones)
            return {"message": f"Reset {deleted} attempt(s)", "deleted_count": deleted}

    @router.post("/{test_id}/auto-complete")
    async def auto_complete(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("auto-complete attempts"):
            await tests.get_owned_test(test_id, user_email)
            completed = await sweeper.sweep(test_id)
            return {"message": f"Auto-completed {completed} expired attempt(s)", "completed_count": completed}

    @router.get("/{test_id}/results")
    async def get_results(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("fetch results"):
            return await analytics.test_results(test_id, user_email)

    @router.get("/{test_id}/analytics")
    async def get_analytics(test_id: str, user_email: str = Depends(auth.staff)):
        with service_errors("fetch analytics"):
            return await analytics.test_analytics(test_id, user_email)

    @router.get("/{test_id}/students/{phone}")
    async def get_student_attempt(test_id: str, phone: str, user_email: str = Depends(auth.staff)):
        with service_errors("fetch attempt"):
            return await regrader.get_student_attempt(test_id, user_email, phone)

    @router.post("/{test_id}/students/{phone}")
    async def adjust_marks(
        test_id: str,
        phone: str,
        payload: AdjustMarksRequest,
        user_email: str = Depends(auth.staff),
    ):
        with service_errors("adjust marks"):
            return await regrader.adjust_marks(test_id, user_email, phone, payload.adjustments)

    return router
