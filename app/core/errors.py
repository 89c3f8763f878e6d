# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Error taxonomy shared by services, jobs and controllers.

Each error carries the HTTP status it maps to and a short machine-readable
code; ``main.py`` renders them as ``{"error": code, "detail": message}``.
"""

from typing import Optional


class StandupError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(StandupError):
    """Malformed input shape."""
    status_code = 400
    code = "validation_error"


class AuthError(StandupError):
    """Invalid, expired or forged token or signature."""
    status_code = 401
    code = "invalid_token"


class NotFoundError(StandupError):
    status_code = 404
    code = "not_found"


class ConflictError(StandupError):
    """Duplicate instance, duplicate answer, or a link to a different org."""
    status_code = 409
    code = "conflict"


class StateError(StandupError):
    """Action against a non-collecting instance or outside its window."""
    status_code = 409
    code = "invalid_state"


class TransientError(StandupError):
    """A downstream messaging call failed; safe to retry on the next tick."""
    status_code = 503
    code = "upstream_unavailable"


class ForbiddenError(StandupError):
    """Credentials were presented but are not accepted."""
    status_code = 403
    code = "forbidden"
