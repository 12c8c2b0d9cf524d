"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class RateLimitException(AppException):
    code = "RATE_LIMITED"
    status_code = 429


# ---------------------------------------------------------------------------
# Fulfillment lifecycle errors
# ---------------------------------------------------------------------------


class PreconditionFailedException(AppException):
    """The item (or its assignment) is not in a status that permits the action."""

    code = "PRECONDITION_FAILED"
    status_code = 409


class InvalidOtpException(AppException):
    """Pickup or delivery code mismatch. Nothing was mutated."""

    code = "INVALID_OTP"
    status_code = 422


class AssignmentUnavailableException(AppException):
    """No delivery partner could be matched. The order stays confirmed."""

    code = "ASSIGNMENT_UNAVAILABLE"
    status_code = 409


class MissingGeoDataException(AppException):
    """The delivery address has no resolvable pincode."""

    code = "MISSING_GEO_DATA"
    status_code = 422


class ConcurrencyConflictException(AppException):
    """Optimistic-concurrency check failed; refetch and retry the same intent."""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409
