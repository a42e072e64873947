"""Caller-facing error taxonomy.

Each error carries the callable-protocol ``code`` it maps to at the
``atomchat.functions`` boundary. Store-level errors live in
:mod:`atomchat.store.turns` and surface to callers as ``internal``.
"""

from __future__ import annotations


class AtomchatError(Exception):
    """Base class for errors that carry a callable error code."""

    code: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgumentError(AtomchatError):
    """Malformed or missing required fields. The caller's fault; not retried."""

    code = "invalid-argument"


class UnauthenticatedError(AtomchatError):
    """No verified caller identity is attached to the request."""

    code = "unauthenticated"


class InternalError(AtomchatError):
    """A collaborator failed. Safe for the caller to retry."""

    code = "internal"


class ModelResponseError(InternalError):
    """The model returned a response with no usable message."""


class ModelTimeoutError(InternalError):
    """The model call exceeded its configured timeout."""

    def __init__(self, timeout_secs: float) -> None:
        super().__init__(f"Model call timed out after {timeout_secs:g}s")
        self.timeout_secs = timeout_secs
