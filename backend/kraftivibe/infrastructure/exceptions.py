"""
Custom Exceptions for Kraftivibe Subscriptions

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any, List


class KraftivibeError(Exception):
    """Base exception for all Kraftivibe errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(KraftivibeError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details, original_error)


class NotFoundError(KraftivibeError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if resource:
            details["resource"] = resource
        if key:
            details["key"] = key
        super().__init__(message, details, original_error)


class ConflictError(KraftivibeError):
    """Raised when a request conflicts with the current resource state."""
    pass


class UsageLimitExceededError(ConflictError):
    """Raised when a tenant's usage is above one or more plan limits."""

    def __init__(
        self,
        message: str,
        dimensions: List[str],
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, {"dimensions": dimensions}, original_error)
        self.dimensions = dimensions


class ServiceError(KraftivibeError):
    """Raised when an operation fails below the service layer."""

    def __init__(
        self,
        code: str,
        message: str,
        original_error: Optional[Exception] = None
    ):
        details = {"code": code}
        if original_error is not None:
            details["cause"] = str(original_error)
        super().__init__(message, details, original_error)
        self.code = code


class DatabaseError(KraftivibeError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class ConfigurationError(KraftivibeError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
