"""
Exception taxonomy for the dispatch core.

Usage errors (ValidationError, NotFoundError, SessionEndedError,
NoBackendAvailableError at submit time) are raised to the caller.
Invocation errors (BackendInvocationError, InvocationTimeoutError) are
recovered inside the dispatcher and surface as failed Results.
"""

from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatch core errors."""


class ValidationError(DispatchError, ValueError):
    """Malformed request or backend configuration."""


class NotFoundError(DispatchError, KeyError):
    """Unknown backend, session or job id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return f"{self.kind} not found: {self.identifier}"


class DuplicateBackendError(DispatchError):
    """A backend with the same name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Backend already registered: {name}")


class NoBackendAvailableError(DispatchError):
    """No enabled backend serves the requested capability."""

    def __init__(self, capability: str, excluded: Optional[list] = None):
        self.capability = capability
        self.excluded = list(excluded or [])
        message = f"No available backend for capability: {capability}"
        if self.excluded:
            message += f" (excluding {', '.join(self.excluded)})"
        super().__init__(message)


class SessionEndedError(DispatchError):
    """The session has been ended and no longer accepts results."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session has ended: {session_id}")


class BackendInvocationError(DispatchError):
    """Wraps any failure raised by the backend invocation collaborator."""

    def __init__(
        self,
        backend_name: str,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.backend_name = backend_name
        self.cause = cause
        super().__init__(f"{backend_name}: {message}")


class InvocationTimeoutError(BackendInvocationError):
    """Backend invocation exceeded its configured deadline."""

    def __init__(self, backend_name: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            backend_name,
            f"invocation timed out after {timeout_seconds:.1f}s",
        )


__all__ = [
    "DispatchError",
    "ValidationError",
    "NotFoundError",
    "DuplicateBackendError",
    "NoBackendAvailableError",
    "SessionEndedError",
    "BackendInvocationError",
    "InvocationTimeoutError",
]
