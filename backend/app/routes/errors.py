"""Translate service errors into HTTP errors inside route handlers."""

import logging
from contextlib import contextmanager

from fastapi import HTTPException

from ..services.exceptions import ServiceError

logger = logging.getLogger(__name__)


@contextmanager
def service_errors(action: str):
    """
    Wrap a handler body.

    ``ServiceError`` becomes an HTTPException with its own status; anything
    unexpected is logged and reported as "Failed to <action>".
    """
    try:
        yield
    except HTTPException:
        raise
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to {action}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")
