"""
Session-based caller identity for route handlers.

Sessions are issued elsewhere; this module only resolves a session token
(cookie or Bearer header) to a user and checks the role.
"""

from fastapi import HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config.settings import settings
from ..models import User
from ..utils import normalize_phone, parse_datetime, utc_now

STAFF_ROLES = ("admin", "faculty")


class SessionAuth:
    """FastAPI dependencies resolving the caller from ``user_sessions``."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def current_user(self, request: Request) -> User:
        """Get current user from session token"""
        session_token = request.cookies.get(settings.SESSION_COOKIE_NAME)

        if not session_token:
            auth_header = request.headers.get("Authorization")
            if auth_header and auth_header.startswith("Bearer "):
                session_token = auth_header.split(" ")[1]

        if not session_token:
            raise HTTPException(status_code=401, detail="Not authenticated")

        session = await self.db.user_sessions.find_one(
            {"session_token": session_token},
            {"_id": 0}
        )
        if not session:
            raise HTTPException(status_code=401, detail="Invalid session")

        expires_at = parse_datetime(session.get("expires_at"))
        if expires_at is None or expires_at < utc_now():
            raise HTTPException(status_code=401, detail="Session expired")

        user = await self.db.users.find_one(
            {"user_id": session["user_id"]},
            {"_id": 0}
        )
        if not user:
            raise HTTPException(status_code=401, detail="User not found")

        return User(**user)

    async def staff(self, request: Request) -> str:
        """Email of an admin or faculty caller."""
        user = await self.current_user(request)
        if user.role not in STAFF_ROLES or not user.email:
            raise HTTPException(status_code=403, detail="Staff access required")
        return user.email

    async def student(self, request: Request) -> str:
        """Digits-only phone number of a student caller."""
        user = await self.current_user(request)
        phone = normalize_phone(user.phone or "")
        if user.role != "student" or not phone:
            raise HTTPException(status_code=403, detail="Student access required")
        return phone
