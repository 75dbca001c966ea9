"""
Explorer exception hierarchy.

Typed exceptions for node access and input validation so the HTTP boundary
can map each failure kind to its own status instead of a generic 500.
"""

from __future__ import annotations

from typing import Any


class ExplorerError(Exception):
    """Base exception for all explorer errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    status_code = 500
    kind = "internal_error"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for API responses."""
        payload: dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


# ==================== Input Errors ====================


class InvalidInputError(ExplorerError):
    """Raised when a client supplied value cannot be used. Never retried."""

    status_code = 400
    kind = "invalid_input"


class InvalidAddressError(InvalidInputError):
    """Raised when an address string fails to parse."""

    kind = "invalid_address"


# ==================== Access Errors ====================


class AuthenticationError(ExplorerError):
    """Raised when an API key is required and the request lacks a valid one."""

    status_code = 401
    kind = "unauthorized"


# ==================== Node Errors ====================


class ServiceUnavailableError(ExplorerError):
    """Raised when there is no usable node connection or the node lacks the UTXO index."""

    status_code = 503
    kind = "service_unavailable"


class UpstreamError(ExplorerError):
    """Raised when a node call fails and no retry policy applies."""

    status_code = 502
    kind = "upstream_error"

    def __init__(self, message: str, method: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.method = method


class UpstreamTransientError(UpstreamError):
    """Raised when a node call failed in a way that may succeed on retry."""

    kind = "upstream_transient"

    def __init__(self, message: str, method: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, method=method, **kwargs)


class RpcTimeoutError(UpstreamTransientError):
    """Raised when a node call exceeds its deadline."""

    status_code = 504
    kind = "timeout"


# ==================== Configuration Errors ====================


class ConfigurationError(ExplorerError):
    """Raised when required configuration is missing or invalid."""

    kind = "configuration_error"
