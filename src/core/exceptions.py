"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from datetime import datetime
from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConflictException(ApplicationException):
    """A unique resource (username, email) already exists."""


class PermissionDeniedException(DomainException):
    """Raised when RBAC or an ownership check rejects an action."""

    def __init__(
        self,
        resource: str,
        action: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource = resource
        self.action = action
        self.resource_id = resource_id
        super().__init__(
            f"Not permitted to {action} on {resource}",
            details or {"resource": resource, "action": action}
        )


class AuthenticationException(DomainException):
    """Base exception for authentication-path failures."""


class InvalidCredentialsException(AuthenticationException):
    """Unknown user or wrong password."""

    def __init__(self, message: str = "Invalid username or password", details: Optional[dict] = None):
        super().__init__(message, details)


class AccountLockedException(AuthenticationException):
    """Authentication attempted while the account is locked."""

    def __init__(self, locked_until: Optional[datetime] = None):
        self.locked_until = locked_until
        details = {"locked_until": locked_until.isoformat()} if locked_until else {}
        super().__init__(
            "Account locked after too many failed attempts. Try again later.",
            details
        )


class InvalidMFACodeException(AuthenticationException):
    """One-time code rejected."""

    def __init__(self, message: str = "Invalid or expired MFA code", details: Optional[dict] = None):
        super().__init__(message, details)


class AppendOnlyViolationException(RepositoryException):
    """Attempted mutation or deletion of an append-only record."""

    def __init__(self, table: str, operation: str):
        self.table = table
        self.operation = operation
        super().__init__(
            f"{table} is append-only: {operation} rejected",
            {"table": table, "operation": operation}
        )


class PersistenceException(RepositoryException):
    """Storage layer failure; the message is safe to show callers."""

    def __init__(self, operation: str, details: Optional[dict] = None):
        self.operation = operation
        super().__init__(f"Could not complete {operation}", details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

