"""Exceptions raised by dropwatch components.

Adapter errors carry an ``ErrorCategory`` so the execution record can
store an actionable diagnostic. Anything a protocol library raises is
translated into one of the four adapter errors at the adapter boundary.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Categories recorded on failed executions."""

    AUTHENTICATION_FAILURE = "AuthenticationFailure"
    CONNECTION_TIMEOUT = "ConnectionTimeout"
    PROTOCOL_ERROR = "ProtocolError"
    PERMISSION_DENIED = "PermissionDenied"


class DropwatchError(Exception):
    """Base exception for dropwatch."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AdapterError(DropwatchError):
    """Base exception for categorized protocol adapter failures."""

    category: ErrorCategory = ErrorCategory.PROTOCOL_ERROR

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class AuthenticationFailure(AdapterError):
    """Raised when the remote rejects the supplied credentials."""

    category = ErrorCategory.AUTHENTICATION_FAILURE


class ConnectionTimeout(AdapterError):
    """Raised when the remote does not answer within the call timeout."""

    category = ErrorCategory.CONNECTION_TIMEOUT


class ProtocolError(AdapterError):
    """Raised for unexpected responses, transport errors and malformed listings."""

    category = ErrorCategory.PROTOCOL_ERROR


class PermissionDenied(AdapterError):
    """Raised when credentials are valid but the location is not accessible."""

    category = ErrorCategory.PERMISSION_DENIED


class SecretResolutionError(DropwatchError):
    """Raised when a secret reference cannot be resolved."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Secret reference could not be resolved: {reference}")
        self.reference = reference


class InvalidTransitionError(DropwatchError):
    """Raised when an execution status change would move backwards."""

    def __init__(self, execution_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Execution {execution_id} cannot move from {current} to {requested}"
        )
        self.execution_id = execution_id
        self.current = current
        self.requested = requested


class ConfigurationError(DropwatchError):
    """Raised for invalid check configurations or application settings."""
    pass
