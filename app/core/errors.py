"""
Error taxonomy for the marketplace.

Every error carries a machine-readable ``error_code`` and is rendered by the
handlers in ``app.main`` as ``{"errorCode": ..., "message": ...}`` with the
matching HTTP status.
"""


class MarketplaceError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: str = None, error_code: str = None):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"errorCode": self.error_code, "message": self.message}


class ValidationFailed(MarketplaceError):
    status_code = 400
    error_code = "VALIDATION_FAILED"
    message = "Request validation failed"


class InvalidTransition(ValidationFailed):
    error_code = "INVALID_TRANSITION"
    message = "Status transition is not allowed"


class Unauthorized(MarketplaceError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    message = "Authentication required"


class Forbidden(MarketplaceError):
    status_code = 403
    error_code = "FORBIDDEN"
    message = "You are not allowed to perform this action"


class NotFound(MarketplaceError):
    status_code = 404
    error_code = "NOT_FOUND"
    message = "Resource not found"


class Conflict(MarketplaceError):
    """Someone else already moved the resource. Callers should re-fetch."""
    status_code = 409
    error_code = "CONFLICT"
    message = "Resource was modified concurrently"


class DuplicateLead(Conflict):
    error_code = "DUPLICATE_LEAD"
    message = "A lead for this scan already exists"


class LeadStatusConflict(Conflict):
    error_code = "LEAD_STATUS_CONFLICT"
    message = "Lead status changed before this update was applied"


class ProjectAlreadyHasLead(Conflict):
    error_code = "PROJECT_ALREADY_HAS_LEAD"
    message = "This project already has a lead"
