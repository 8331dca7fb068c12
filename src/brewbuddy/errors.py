"""Error taxonomy shared by the services and the HTTP layer.

Every :class:`ServiceError` maps to a status code and a client-facing message.
The API turns them into the ``{"success": false, "error": ...}`` envelope.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 500
    message = "Server error"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, **self.extra}


class ValidationError(ServiceError):
    status_code = 400
    message = "Invalid input"


class BadRequestError(ServiceError):
    status_code = 400
    message = "Bad request"


class MissingTokenError(ServiceError):
    status_code = 400
    message = "Token required"


class UnauthorizedError(ServiceError):
    status_code = 401
    message = "Unauthorized"


class CapacityError(ServiceError):
    status_code = 403
    message = "Registration is closed"


class NotFoundError(ServiceError):
    status_code = 404
    message = "Endpoint not found"


class ConflictError(ServiceError):
    status_code = 409
    message = "Conflict"


class AnalysisError(ServiceError):
    """Image analysis failure.

    The constructor argument is the internal detail used for logging; callers
    only ever see the generic :attr:`message`.
    """

    status_code = 500
    message = "Analysis failed. Please try again."

    def __init__(self, detail: str) -> None:
        super().__init__()
        self.detail = detail

    def __str__(self) -> str:
        return self.detail


class UpstreamError(AnalysisError):
    """The vision API could not be reached or answered with an error."""


class ParseError(AnalysisError):
    """The vision API reply did not contain the expected JSON object."""


class StoreUnavailableError(RuntimeError):
    """The configured database could not be reached at startup."""
