"""Actor identity: session resolution and request authentication."""

from auth.exceptions import (
    AuthError,
    InvalidTokenError,
    SessionExpiredError,
)
from auth.types import Actor, Role, Session
from auth.config import AuthConfig
from auth.session import SessionManager
from auth.security_middleware import AuthMiddleware
