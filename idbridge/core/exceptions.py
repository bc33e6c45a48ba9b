# idbridge/core/exceptions.py
"""
Core exceptions for the identity bridge.

This module defines all custom exceptions used by the security pipeline,
providing consistent error handling and debugging information.
"""

from typing import Optional, Dict, Any, List


class BridgeError(Exception):
    """Base exception for all identity bridge errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize bridge base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BridgeError):
    """Missing or invalid configuration at startup. Always fatal."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize configuration error.

        Args:
            message: Error description
            component: Component with configuration issue
            details: Additional configuration context (never key material)
        """
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


class SecurityError(BridgeError):
    """Errors in security validation and authentication"""

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize security error.

        Args:
            message: Error description
            error_type: Type of security error (cookie, csrf, ...)
            details: Additional security context
        """
        super().__init__(message, details)
        self.error_type = error_type

        if error_type:
            self.details['error_type'] = error_type


class CookieDecodeError(SecurityError):
    """
    A session cookie could not be used.

    Raised for every rejection reason alike (malformed, tampered, expired).
    The message is fixed and no cause is attached, so callers cannot tell
    the reasons apart.
    """

    def __init__(self):
        super().__init__("Invalid session cookie", error_type="cookie")


class SessionError(BridgeError):
    """Errors in session management and state handling"""


class SessionTooLargeError(SessionError):
    """The encoded session would not fit into a browser cookie"""

    def __init__(self, size: int, limit: int):
        super().__init__(
            "Encoded session exceeds cookie size limit",
            details={'size': size, 'limit': limit}
        )
        self.size = size
        self.limit = limit


class RequestRejected(BridgeError):
    """
    Base class for client errors raised by pipeline stages.

    The pipeline turns these into a response with ``status_code`` and
    ``public_payload()`` and never calls the route handler.
    """

    status_code: int = 400

    def public_payload(self) -> Dict[str, Any]:
        """Body sent to the client. Must not leak internal details."""
        return {"detail": self.message}


class CsrfMismatchError(RequestRejected):
    """State-changing request without a valid CSRF token"""

    status_code = 403

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Request could not be verified", details)
        self.details['error_type'] = 'csrf'


class FieldValidationError(RequestRejected):
    """One or more request fields failed validation"""

    status_code = 400

    def __init__(self, errors: List[Any]):
        """
        Initialize validation error.

        Args:
            errors: Every FieldError found, not just the first
        """
        super().__init__(
            "Invalid request",
            details={'fields': [error.field for error in errors]}
        )
        self.errors = list(errors)

    def public_payload(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "errors": [error.to_dict() for error in self.errors]
        }


class MalformedBodyError(RequestRejected):
    """Request body could not be parsed into fields"""

    status_code = 400

    def __init__(self, reason: Optional[str] = None):
        super().__init__(
            "Malformed request body",
            details={'reason': reason} if reason else None
        )


class BackendUnavailableError(BridgeError):
    """The identity backend is missing or not reachable"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.service_name = service_name

        if service_name:
            self.details['service'] = service_name


GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."

# Client-safe messages by exception type name
SAFE_ERROR_MESSAGES = {
    "ConnectionError": "Connection error. Please try again later.",
    "TimeoutError": "The request took too long. Please try again.",
    "BackendUnavailableError": "Service temporarily unavailable. Please try again later.",
}


def get_safe_error_message(error: Exception) -> str:
    """Return a message for the client that doesn't expose internal details"""
    return SAFE_ERROR_MESSAGES.get(type(error).__name__, GENERIC_ERROR_MESSAGE)


# Convenience functions for creating common errors

def config_error(message: str, component: str) -> ConfigurationError:
    """Create a configuration error with component context."""
    return ConfigurationError(message, component=component)


def backend_error(message: str, service: str = None) -> BackendUnavailableError:
    """Create a backend error with service context."""
    return BackendUnavailableError(message, service_name=service)
