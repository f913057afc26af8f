from __future__ import annotations

import dataclasses
from typing import Any


@dataclasses.dataclass(slots=True)
class APIError(Exception):
    """HTTP-layer error (auth, request shape) that maps to the error envelope."""

    code: str
    message: str
    status_code: int = 400
    details: Any | None = None


class DomainError(Exception):
    """Base class for failures raised by the service layer.

    Subclasses fix the taxonomy tag (`code`) and the HTTP status; callers may
    refine `code` for a more specific reason while keeping the kind intact.
    """

    code: str = "DOMAIN_ERROR"
    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: Any | None = None,
    ) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details = details
        super().__init__(self.message)


class ValidationError(DomainError):
    """Malformed input rejected before any write."""

    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Invalid input"


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class PermissionDeniedError(DomainError):
    """Access denied; terminal until the user changes a setting."""

    code = "PERMISSION_DENIED"
    status_code = 403
    default_message = "Permission denied; check your settings"


class TransientIOError(DomainError):
    code = "TRANSIENT_IO_ERROR"
    status_code = 503
    default_message = "Temporary problem reaching storage, please retry"


class StateConflictError(DomainError):
    """The target is no longer in a state that allows the requested action."""

    code = "STATE_CONFLICT"
    status_code = 409
    default_message = "Invalid state transition"


def make_error_payload(
    *, code: str, message: str, trace_id: str | None, details: Any | None
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "details": details,
        "trace_id": trace_id,
    }
