"""Standardized error types for tool executors.

Executors raise these; the tool router folds them into failed tool results
so they never abort a round.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "ToolError",
    "UnknownToolError",
    "InvalidParameterError",
    "NotFoundError",
    "ConflictError",
    "ToolTimeoutError",
    "UnavailableError",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Constants for error codes used in tool responses."""

    UNKNOWN_TOOL = "unknown_tool"
    INVALID_PARAMETER = "invalid_parameter"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str = ErrorCode.INTERNAL_ERROR
    message: str = "Tool execution failed"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def describe(self) -> str:
        """Message handed back to the model in a failed result."""
        if self.suggestion:
            return f"{self.message}. {self.suggestion}"
        return self.message

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class UnknownToolError(ToolError):
    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="unknown tool")


@dataclass
class InvalidParameterError(ToolError):
    """Raised when tool input is missing or malformed."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid tool input")


@dataclass
class NotFoundError(ToolError):
    """Raised when the referenced object does not exist."""

    error_code: str = field(default=ErrorCode.NOT_FOUND)
    message: str = field(default="Not found")


@dataclass
class ConflictError(ToolError):
    """Raised when a create collides with an existing object."""

    error_code: str = field(default=ErrorCode.CONFLICT)
    message: str = field(default="Already exists")


@dataclass
class ToolTimeoutError(ToolError):
    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution timed out")


@dataclass
class UnavailableError(ToolError):
    """Raised when a tool's backing service is not configured or reachable."""

    error_code: str = field(default=ErrorCode.UNAVAILABLE)
    message: str = field(default="Service unavailable")
