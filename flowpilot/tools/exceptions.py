from __future__ import annotations


class ToolError(RuntimeError):
    """Base class for failures raised by a tool provider invocation."""


class CapabilityUnavailable(ToolError):
    """Raised when a capability cannot be reached or does not exist."""


class AuthenticationRequired(ToolError):
    """Raised when the principal is not authenticated for the capability."""


class InvocationFailed(ToolError):
    """Raised when an operation was reached but failed to produce a result."""


class ToolTimeoutError(InvocationFailed):
    """Raised when a single invocation attempt exceeds its timeout."""


__all__ = [
    "AuthenticationRequired",
    "CapabilityUnavailable",
    "InvocationFailed",
    "ToolError",
    "ToolTimeoutError",
]
