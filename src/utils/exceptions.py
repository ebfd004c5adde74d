"""
Application Exceptions
Typed errors raised by the services and converted to JSON by the API layer

Every error carries a stable machine readable ``code`` and the HTTP
status it maps to, so callers catch by type and clients switch on code:

    AppError
    +-- ValidationError              VALIDATION_ERROR          400
    +-- ForbiddenError               FORBIDDEN                 403
    +-- NotFoundError                NOT_FOUND                 404
    +-- InvalidStateTransitionError  INVALID_STATE_TRANSITION  409
    +-- InternalError                INTERNAL_ERROR            500
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for all application errors"""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        """Serialize to the API error body"""
        body = {
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        if include_details and self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Missing or malformed input (fund type, project id, remarks, receipts)"""

    code = "VALIDATION_ERROR"
    status_code = 400


class ForbiddenError(AppError):
    """Actor is not the authorized approver or the report owner"""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(AppError):
    """Report, item, user or registry record is absent"""

    code = "NOT_FOUND"
    status_code = 404

    @classmethod
    def for_resource(cls, resource: str, identifier: Any = None) -> "NotFoundError":
        message = f"{resource} not found"
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = identifier
        return cls(message, details)


class InvalidStateTransitionError(AppError):
    """Action not permitted for the current status, role and fund type"""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class InternalError(AppError):
    """Persistence or other unexpected server-side failure"""

    code = "INTERNAL_ERROR"
    status_code = 500
