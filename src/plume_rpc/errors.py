"""
Error types for the Plume RPC server.

This module defines the RPCError base class and one subclass per error kind
the server reports to clients. Every user-visible failure is expressed as an
RPCError and rendered on the wire as ``{"error": message}`` with the error's
HTTP status code; errors never reach the HTTP layer as stack traces.

Error kinds and their canonical statuses:
- MalformedRequestError: 400 (body is not valid JSON, "args" not an object)
- MissingRPCError: 401 ("rpc required", "no rpc specified")
- TokenError: 401 ("token required", "token expired or unknown", zombies)
- InvalidCredentialsError: 401 (signup/login credential checks)
- NotFoundError: 404 ("rpc unknown", "username unknown")
- MethodNotAllowedError: 405 ("POST only")
- ConflictError: 409 ("username taken")
- PayloadTooLargeError: 413 ("request too large")
- HandlerFailureError: 500 or handler-supplied ("rpc failed: <message>")
"""

from __future__ import annotations

from typing import Any

DEFAULT_HANDLER_FAILURE_STATUS = 500


class RPCError(Exception):
    """
    Base exception class for errors reported to RPC clients.

    Handlers may raise RPCError (or a subclass) to control the HTTP status of
    the failure response. Plain exceptions raised by handlers map to 500.

    Attributes:
        message: Human-readable error message sent to the client.
        status_code: HTTP status code of the error response.
        error_code: Internal error category used in logs.
        details: Optional structured details (never sent to the client).

    Example:
        >>> raise RPCError("quota exceeded", status_code=429)
    """

    error_code = "rpc_error"

    def __init__(
        self,
        message: str,
        status_code: int = DEFAULT_HANDLER_FAILURE_STATUS,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an RPCError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code for the error response.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"status_code={self.status_code!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to its wire representation.

        Returns:
            Dictionary with the single key "error".
        """
        return {"error": self.message}


class MalformedRequestError(RPCError):
    """Raised when the request body or its "args" cannot be used."""

    error_code = "malformed_request"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status_code=400, details=details)


class MissingRPCError(RPCError):
    """
    Raised when the "rpc" field is missing, not a string, or blank.

    Reported as 401 rather than 400 for compatibility with existing clients.
    """

    error_code = "missing_rpc"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status_code=401, details=details)


class TokenError(RPCError):
    """Raised when a gated RPC is called without a usable token."""

    error_code = "bad_token"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(RPCError):
    """Raised when signup or login credentials are rejected."""

    error_code = "invalid_credentials"

    def __init__(
        self,
        message: str = "invalid credentials",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=401, details=details)


class NotFoundError(RPCError):
    """Raised when an RPC or a user does not exist."""

    error_code = "not_found"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status_code=404, details=details)


class MethodNotAllowedError(RPCError):
    """Raised for any HTTP method other than POST."""

    error_code = "method_not_allowed"

    def __init__(
        self,
        message: str = "POST only",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=405, details=details)


class ConflictError(RPCError):
    """Raised when a username is already present in the user store."""

    error_code = "conflict"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status_code=409, details=details)


class PayloadTooLargeError(RPCError):
    """Raised when a request body exceeds the configured size cap."""

    error_code = "payload_too_large"

    def __init__(
        self,
        message: str = "request too large",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=413, details=details)


class HandlerFailureError(RPCError):
    """
    Wraps an exception raised by an RPC handler.

    The status code is taken from the original exception when it carries one
    (an RPCError, or any exception with an integer ``status_code`` or
    ``code`` attribute in the 400-599 range); otherwise it is 500.
    """

    error_code = "handler_failure"

    @classmethod
    def from_exception(cls, exc: BaseException) -> HandlerFailureError:
        """
        Build the failure response for an exception escaping a handler.

        Args:
            exc: The exception raised by the handler.

        Returns:
            HandlerFailureError with message "rpc failed: <message>".
        """
        reason = exc.message if isinstance(exc, RPCError) else str(exc)
        return cls(
            f"rpc failed: {reason}",
            status_code=status_code_of(exc),
            details={"exception_type": type(exc).__name__},
        )


class StartupError(RuntimeError):
    """Raised when the server cannot start; fatal to the host process."""


def status_code_of(exc: BaseException) -> int:
    """
    Extract an HTTP status code attached to an exception.

    Args:
        exc: Any exception.

    Returns:
        The attached status code, or 500 if none is usable.
    """
    for attribute in ("status_code", "code"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool) and 400 <= value <= 599:
            return value
    return DEFAULT_HANDLER_FAILURE_STATUS
