"""
Error taxonomy shared by the collector and the persistence backends.
"""
from typing import Optional


class IgnitiaError(Exception):
    """Base for every error raised by this package."""


class ValidationError(IgnitiaError):
    """A row or field from the portal had the wrong shape."""


class MarshalError(IgnitiaError):
    """The paginated response envelope had the wrong shape."""


class AuthenticationError(IgnitiaError):
    """The login form rejected the configured credentials."""


class TransportError(IgnitiaError):
    """Network failure, timeout, non-2xx status or unexpected content type."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(IgnitiaError):
    """Storage engine failure, scoped to one backend instance."""
