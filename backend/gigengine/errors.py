"""
Engine error taxonomy.

Every error carries the HTTP status and machine-readable code the API layer
reports in the failure envelope. Services raise these; routers never build
HTTPExceptions for engine failures themselves.
"""
from typing import Any, Optional


class GigEngineError(Exception):
    """Base class for all engine errors."""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GigEngineError):
    """Malformed or out-of-range input, rejected before touching storage."""
    status_code = 400
    code = "validation_error"


class ForbiddenError(GigEngineError):
    status_code = 403
    code = "forbidden"


class NotFoundError(GigEngineError):
    status_code = 404
    code = "not_found"


class ConflictError(GigEngineError):
    status_code = 409
    code = "conflict"


class DuplicateApplicationError(ConflictError):
    code = "duplicate_application"


class GigNotAcceptingApplicationsError(ConflictError):
    code = "gig_not_accepting_applications"


class GigAlreadyAssignedError(ConflictError):
    code = "gig_already_assigned"


class ApplicationNotPendingError(ConflictError):
    code = "application_not_pending"


class GigNotEditableError(ConflictError):
    code = "gig_not_editable"


class ConcurrentModificationError(ConflictError):
    code = "concurrent_modification"


class InvalidSortError(ConflictError):
    code = "invalid_sort"


class InvalidTransitionError(ConflictError):
    """Raised when a lifecycle transition is not allowed from the current status"""
    code = "invalid_transition"

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        message = f"Invalid transition from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"current": current, "requested": requested})
        self.current = current
        self.requested = requested


class OperationTimeoutError(GigEngineError):
    status_code = 504
    code = "timeout"


class InternalError(GigEngineError):
    status_code = 500
    code = "internal_error"
