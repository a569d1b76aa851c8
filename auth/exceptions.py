"""Typed exceptions for session resolution failures."""


class AuthError(Exception):
    """Base class for authentication errors."""


class InvalidTokenError(AuthError):
    """Session record exists but cannot be decoded into an actor."""


class SessionExpiredError(AuthError):
    """Session has expired and user must re-authenticate."""
