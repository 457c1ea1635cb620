"""
errors.py — domain exception hierarchy.

Services raise these; main.py maps each family to the standard
{error: {code, message, details}} envelope with the right HTTP status.
"""
from typing import Any, Optional


class EOSError(Exception):
    """Base class for errors that carry their own HTTP status and error code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationFailed(EOSError):
    """Missing or malformed input, one detail per offending field."""

    status_code = 400
    code = "VALIDATION_ERROR"

    @classmethod
    def for_fields(cls, issues: dict[str, str]) -> "ValidationFailed":
        details = [{"field": field, "issue": issue} for field, issue in issues.items()]
        first = next(iter(issues.values()), "Invalid request")
        message = first if len(issues) == 1 else f"{len(issues)} fields are invalid"
        return cls(message, details)


class NotFound(EOSError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(EOSError):
    status_code = 409
    code = "CONFLICT"


class Unauthorized(EOSError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(EOSError):
    status_code = 403
    code = "FORBIDDEN"


class InsufficientFunds(EOSError):
    status_code = 400
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, requested_cents: int, available_cents: int):
        super().__init__(
            "Insufficient balance",
            [{"field": "amountCents", "issue": f"requested {requested_cents}, available {available_cents}"}],
        )
        self.requested_cents = requested_cents
        self.available_cents = available_cents


class UpstreamFailure(EOSError):
    """A payment-processor or SMS gateway call failed; message is passed through."""

    status_code = 502
    code = "UPSTREAM_ERROR"
