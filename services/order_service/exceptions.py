"""
Error taxonomy of the order service.

ValidationError / NotFoundError / ForbiddenError / InvalidTransitionError are
terminal and go straight back to the caller. ConflictError is raised only
after the transition engine's single internal retry. UnavailableError means
the database could not be reached and nothing was committed.
"""


class OrderServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(OrderServiceError):
    status_code = 400
    code = "validation_error"


class NotFoundError(OrderServiceError):
    status_code = 404
    code = "not_found"


class ForbiddenError(OrderServiceError):
    status_code = 403
    code = "forbidden"


class InvalidTransitionError(OrderServiceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Order cannot move from {current} to {requested}")
        self.current = current
        self.requested = requested


class ConflictError(OrderServiceError):
    status_code = 409
    code = "conflict"


class UnavailableError(OrderServiceError):
    status_code = 503
    code = "unavailable"
