"""Domain errors raised by services and translated to HTTP errors by routes."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    """Test, attempt or student absent, or not owned by the caller."""
    status_code = 404


class UnauthorizedError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class ValidationError(ServiceError):
    """Malformed definitions, missing fields, bad time windows."""
    status_code = 400


class ConflictError(ServiceError):
    """Duplicate attempt or resubmission of a completed attempt."""
    status_code = 409


class AlreadyExpiredError(ServiceError):
    """A new attempt was requested after the test window closed."""
    status_code = 410
