"""
Custom exceptions for the SLA Escalation Engine.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class SlaEngineException(Exception):
    """Base exception for all SLA engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SlaEngineException):
    """Raised when record or step data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        record_id: Optional[str] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if record_id:
            details["record_id"] = record_id

        super().__init__(message, details, status_code=422)


class DatabaseError(SlaEngineException):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class StepNotFoundError(SlaEngineException):
    """Raised when a record references a step definition that doesn't exist."""

    def __init__(
        self,
        message: str,
        record_id: str,
        step_ref: Optional[str] = None
    ):
        details = {"record_id": record_id}
        if step_ref:
            details["step_ref"] = step_ref

        super().__init__(message, details, status_code=404)

