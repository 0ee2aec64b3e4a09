"""
Core Exceptions
================

Typed failures of the issue lifecycle core.

Every expected business outcome (bad input, illegal transition, expired
reopen window, lost write race, missing issue) has its own exception class
with a stable ``error_code`` so the HTTP layer can turn it into a structured,
user-facing message.
"""

from typing import Any, Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    error_code = "application_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Structured representation for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class DomainException(ApplicationException):
    """Base exception for business-rule violations detected before any mutation."""

    error_code = "domain_error"


class ValidationException(DomainException):
    """Bad input, e.g. an empty reopen reason or an unknown status label."""

    error_code = "validation_failure"


class IllegalTransitionException(DomainException):
    """The requested transition is not permitted from the current state."""

    error_code = "illegal_transition"

    def __init__(
        self,
        issue_id: Any,
        current_status: str,
        requested: str,
        reason: str,
        details: Optional[dict] = None
    ):
        self.issue_id = issue_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Issue {issue_id}: cannot {requested} from '{current_status}': {reason}",
            details or {
                "issue_id": issue_id,
                "current_status": current_status,
                "requested": requested,
            }
        )


class NotReopenableException(DomainException):
    """Reopen attempted on an issue that is not resolved or closed."""

    error_code = "not_reopenable"

    def __init__(self, issue_id: Any, current_status: str):
        self.issue_id = issue_id
        self.current_status = current_status
        super().__init__(
            f"Issue {issue_id} is '{current_status}' and cannot be reopened",
            {"issue_id": issue_id, "current_status": current_status}
        )


class ReopenWindowExpiredException(DomainException):
    """Reopen attempted after the reopen window has lapsed."""

    error_code = "reopen_window_expired"

    def __init__(self, issue_id: Any, reopenable_until: Any):
        self.issue_id = issue_id
        self.reopenable_until = reopenable_until
        until = reopenable_until.isoformat() if reopenable_until else None
        super().__init__(
            f"Reopen window for issue {issue_id} has expired",
            {"issue_id": issue_id, "reopenable_until": until}
        )


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    error_code = "repository_error"


class VersionConflictException(RepositoryException):
    """A concurrent write won the compare-and-swap on the issue row."""

    error_code = "version_conflict"

    def __init__(
        self,
        issue_id: Any,
        expected_version: int,
        attempts: Optional[int] = None
    ):
        self.issue_id = issue_id
        self.expected_version = expected_version
        self.attempts = attempts
        message = f"Issue {issue_id} was modified concurrently"
        if attempts:
            message += f" ({attempts} attempts); refresh the issue and retry"
        super().__init__(
            message,
            {"issue_id": issue_id, "expected_version": expected_version, "attempts": attempts}
        )


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    error_code = "not_found"

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id is not None:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class LookupDegradedException(ApplicationException):
    """Actor name resolution failed; callers fall back to placeholder data."""

    error_code = "lookup_degraded"

    def __init__(self, employee_id: Any, message: str = "actor lookup failed"):
        self.employee_id = employee_id
        super().__init__(f"{message} for employee {employee_id}", {"employee_id": employee_id})


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    error_code = "configuration_error"
