"""
Dashboard analytics routes.

Endpoints:
- GET /api/admin/analytics/batch?batch=...
- GET /api/student/analytics
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..services import AnalyticsService
from .auth import SessionAuth
from .errors import service_errors


def create_analytics_routes(db: AsyncIOMotorDatabase) -> APIRouter:
    """Create analytics routes with database connection."""

    router = APIRouter(prefix="/api", tags=["analytics"])
    auth = SessionAuth(db)
    analytics = AnalyticsService(db)

    @router.get("/admin/analytics/batch")
    async def batch_analytics(batch: Optional[str] = None, user_email: str = Depends(auth.staff)):
        if not batch:
            raise HTTPException(status_code=400, detail="Batch is required")
        with service_errors("fetch analytics"):
            return await analytics.batch_analytics(batch)

    @router.get("/student/analytics")
    async def student_analytics(batch: Optional[str] = None, phone: str = Depends(auth.student)):
        with service_errors("fetch analytics"):
            return await analytics.student_analytics(phone, batch)

    return router
