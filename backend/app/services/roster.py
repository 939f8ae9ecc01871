"""Roster lookups over the batch_students collection."""

from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..utils import normalize_phone


class RosterService:
    """Answers "who is in which batch" for the test services."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_student(self, phone: str) -> Optional[Dict]:
        return await self.db.batch_students.find_one(
            {"phone_number": normalize_phone(phone)},
            {"_id": 0}
        )

    async def batches_for(self, phone: str) -> List[str]:
        student = await self.get_student(phone)
        return (student or {}).get("courses", [])

    async def students_in_batches(self, batches: List[str]) -> List[Dict]:
        """Students enrolled in any of the given batches, one entry per phone."""
        if not batches:
            return []
        cursor = self.db.batch_students.find(
            {"courses": {"$in": batches}},
            {"_id": 0, "phone_number": 1, "name": 1, "courses": 1, "created_at": 1}
        )
        students = []
        async for doc in cursor:
            matching = next((c for c in doc.get("courses", []) if c in batches), "")
            students.append({
                "name": doc.get("name") or "Unknown",
                "phone": doc["phone_number"],
                "batch": matching,
                "created_at": doc.get("created_at"),
            })
        return students
