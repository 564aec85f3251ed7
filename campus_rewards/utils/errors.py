class ServiceError(Exception):
    """Base error rendered as {"detail": message, "reason": reason}."""

    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class ValidationError(ServiceError):
    status_code = 400
    reason = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    reason = "not_found"


class DomainError(ServiceError):
    status_code = 409
    reason = "rule_violation"


class DatabaseError(ServiceError):
    status_code = 503
    reason = "database_unavailable"
