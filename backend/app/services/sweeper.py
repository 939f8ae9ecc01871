"""
Auto-completion sweeper.

Force-completes in-progress attempts that have outlived their duration or
the test's end time, grading whatever answers were saved. Safe to re-run:
only attempts still in progress are touched.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config.settings import settings
from ..models import OnlineTest, TERMINATION_AUTO_EXPIRED, TestAttempt
from ..utils import parse_datetime, utc_now
from .attempts import completion_update
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)


def is_expired(attempt: TestAttempt, test: OnlineTest, now: datetime) -> bool:
    """True once the attempt ran past its duration or the test window closed."""
    started = parse_datetime(attempt.started_at)
    duration = test.deployment.duration_minutes or settings.DEFAULT_DURATION_MINUTES
    by_duration = started is not None and now - started > timedelta(minutes=duration)

    end = parse_datetime(test.deployment.end_time)
    by_end_time = end is not None and now > end
    return by_duration or by_end_time


class SweeperService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def sweep(self, test_id: str, now: Optional[datetime] = None) -> int:
        """Complete every expired in-progress attempt of a test. Returns how many were completed."""
        doc = await self.db.online_tests.find_one({"test_id": test_id}, {"_id": 0})
        if not doc:
            raise NotFoundError("Test not found")
        test = OnlineTest.model_validate(doc)
        now = now or utc_now()

        completed = 0
        cursor = self.db.test_attempts.find({"test_id": test_id, "status": "in_progress"}, {"_id": 0})
        async for attempt_doc in cursor:
            attempt_id = attempt_doc.get("attempt_id")
            try:
                attempt = TestAttempt.model_validate(attempt_doc)
                if not is_expired(attempt, test, now):
                    continue

                update = completion_update(attempt, test, now, TERMINATION_AUTO_EXPIRED)
                # a student submit may have landed since the read
                result = await self.db.test_attempts.update_one(
                    {"attempt_id": attempt.attempt_id, "status": "in_progress"},
                    {"$set": update}
                )
                if result.modified_count:
                    completed += 1
                    logger.info(
                        f"Auto-completed attempt {attempt.attempt_id} for {attempt.student_phone}: "
                        f"score={update['score']}"
                    )
            except Exception as e:
                logger.error(f"Failed to auto-complete attempt {attempt_id}: {e}", exc_info=True)

        if completed:
            logger.info(f"Sweep of test {test_id} completed {completed} attempts")
        return completed

    async def sweep_all_deployed(self, now: Optional[datetime] = None) -> int:
        """Sweep every deployed test; used by the background worker."""
        total = 0
        async for doc in self.db.online_tests.find({"status": "deployed"}, {"_id": 0, "test_id": 1}):
            try:
                total += await self.sweep(doc["test_id"], now)
            except Exception as e:
                logger.error(f"Sweep failed for test {doc.get('test_id')}: {e}", exc_info=True)
        return total
