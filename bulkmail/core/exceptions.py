"""Custom exception hierarchy for BulkMail.

All domain errors inherit from ``BulkMailException`` so the API layer can map
them to a response in one place.

Error codes follow pattern: [CATEGORY][NUMBER]
- USR: User/Auth errors (100-199)
- CMP: Campaign errors (001-099)
- JOB: Email job errors (001-099)
- QTA: Quota errors (001-099)
- VAL: Validation errors (001-099)
- SYS: System errors (400-499)
"""

from __future__ import annotations

from typing import Any


class BulkMailException(Exception):
    """Base exception for all BulkMail application errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with user-facing message and metadata.

        Args:
            message: User-facing error message
            code: Unique error code (e.g., "JOB001")
            status_code: HTTP status code (default: 400 Bad Request)
            details: Optional additional context
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


# ============================================================================
# USER/AUTH ERRORS (USR100-199)
# ============================================================================

class UserError(BulkMailException):
    """Base class for user/authentication errors."""
    pass


class UserNotFoundError(UserError):
    """User does not exist."""

    def __init__(self, identifier: str | int | None = None):
        message = "User not found" if identifier is None else f"User '{identifier}' not found"
        super().__init__(
            message=message,
            code="USR100",
            status_code=404,
            details={"identifier": identifier} if identifier is not None else {},
        )


class UnauthorizedError(UserError):
    """No valid session was presented."""

    def __init__(self, reason: str | None = None):
        super().__init__(
            message="Authentication required" if not reason else f"Authentication required: {reason}",
            code="USR106",
            status_code=401,
        )


# ============================================================================
# CAMPAIGN / JOB ERRORS
# ============================================================================

class CampaignNotFoundError(BulkMailException):
    """Campaign does not exist or belongs to someone else."""

    def __init__(self, campaign_id: str | None = None):
        super().__init__(
            message="Campaign not found",
            code="CMP001",
            status_code=404,
            details={"campaign_id": campaign_id} if campaign_id else {},
        )


class JobNotFoundError(BulkMailException):
    """Email job does not exist or belongs to someone else."""

    def __init__(self, job_id: str | None = None):
        super().__init__(
            message="Job not found or access denied",
            code="JOB001",
            status_code=404,
            details={"job_id": job_id} if job_id else {},
        )


class JobAlreadyFinishedError(BulkMailException):
    """Job is in a terminal state and cannot transition any further."""

    def __init__(self, job_id: str, status: str):
        super().__init__(
            message="Job already finished",
            code="JOB002",
            status_code=409,
            details={"job_id": job_id, "status": status},
        )


# ============================================================================
# QUOTA ERRORS (QTA001-099)
# ============================================================================

class QuotaExceededError(BulkMailException):
    """Submission would exceed the monthly allowance of the correlated accounts."""

    def __init__(self, requested: int, remaining: int, limit: int):
        message = (
            f"Monthly email limit reached. {remaining} of {limit} emails remaining, "
            f"but {requested} were requested."
        )
        super().__init__(
            message=message,
            code="QTA001",
            status_code=403,
            details={"requested": requested, "remaining": remaining, "limit": limit},
        )


# ============================================================================
# VALIDATION ERRORS (VAL001-099)
# ============================================================================

class InvalidIdentifierError(BulkMailException):
    """Malformed identifier supplied by the caller."""

    def __init__(self, field: str, value: str | None = None):
        super().__init__(
            message=f"Invalid {field}",
            code="VAL001",
            status_code=422,
            details={"field": field},
        )


# ============================================================================
# SYSTEM ERRORS (SYS400-499)
# ============================================================================

class ConfigurationError(BulkMailException):
    """Application configuration is invalid or missing."""

    def __init__(self, parameter: str):
        message = f"Configuration error: {parameter} is not configured properly"
        super().__init__(
            message=message,
            code="SYS401",
            status_code=500,
            details={"parameter": parameter},
        )
