"""
Error taxonomy for the activity programme.

Services raise these; the app renders them through a single exception
handler registered in ``main.create_app``.
"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    status_code = 400
    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(SchedulingError):
    """Malformed activity data (missing field, bad time ordering, unknown pattern...)."""
    status_code = 400
    code = "validation_error"


class AuthorizationError(SchedulingError):
    status_code = 403
    code = "authorization_error"


class NotFoundError(SchedulingError):
    status_code = 404
    code = "not_found"


class ConflictError(SchedulingError):
    """Lost a race: duplicate occurrence child or concurrent status change."""
    status_code = 409
    code = "conflict"


class StateTransitionError(ValidationError):
    """Illegal lifecycle jump; a validation failure reported as 409."""
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move activity from {current} to {requested}",
            details={"current": current, "requested": requested},
        )
