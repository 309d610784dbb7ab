"""
Domain exceptions for Plenaria Legal.

Every command failure is raised as a subclass of ``ConsultationError`` and
translated at the edge: into the standard error envelope for HTTP, or into an
``error`` event on the live channel.
"""

from typing import Any, Dict, Optional


class ConsultationError(Exception):
    """Base class for failures surfaced to callers."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ConsultationError):
    """Malformed or missing input."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(ConsultationError):
    """Missing, invalid or expired credential."""

    status_code = 401
    code = "authentication_error"


class AuthorizationError(ConsultationError):
    """Authenticated actor without standing for the command."""

    status_code = 403
    code = "authorization_error"


class StateConflictError(ConsultationError):
    """The consultation is no longer in the status the command requires."""

    status_code = 409
    code = "state_conflict"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, details={"current_status": current_status})
        self.current_status = current_status


class QuotaExceededError(ConsultationError):
    """Monthly consultation cap reached."""

    status_code = 403
    code = "quota_exceeded"

    def __init__(self, message: str, quota: Dict[str, Any]):
        super().__init__(message, details={"quota": quota})
        self.quota = quota


class NotFoundError(ConsultationError):
    status_code = 404
    code = "not_found"


class InfrastructureError(ConsultationError):
    """Storage or other infrastructure unavailable."""

    status_code = 503
    code = "infrastructure_error"
