"""Services for online test management, attempts, grading and analytics."""

from .analytics import AnalyticsService
from .attempts import AttemptService
from .exceptions import (
    AlreadyExpiredError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
    ValidationError,
)
from .online_tests import OnlineTestService
from .regrading import RegradingService
from .roster import RosterService
from .sweeper import SweeperService

__all__ = [
    "AnalyticsService",
    "AttemptService",
    "OnlineTestService",
    "RegradingService",
    "RosterService",
    "SweeperService",
    "ServiceError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    "AlreadyExpiredError",
]
