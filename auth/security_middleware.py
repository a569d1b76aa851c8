"""Security middleware for FastAPI - session resolution and actor context."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.session import SessionManager
from auth.exceptions import AuthError, SessionExpiredError
from api.base import error_response, ErrorCodes
from utils.user_context import set_current_actor, clear_current_actor


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the session into an actor.

    For protected routes:
    1. Extracts session token from the session cookie or a Bearer header
    2. Validates session via SessionManager
    3. Sets the actor in request.state and in actor context
    4. Clears context after request completes

    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, session_manager: SessionManager, cookie_name: str = "session_token"):
        super().__init__(app)
        self._session_manager = session_manager
        self._cookie_name = cookie_name

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    def _extract_token(self, request: Request) -> str | None:
        token = request.cookies.get(self._cookie_name)
        if token:
            return token

        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header[len("Bearer "):].strip() or None

        return None

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        session_token = self._extract_token(request)

        if not session_token:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.SESSION_EXPIRED,
                    "Session has expired",
                ).model_dump(mode="json"),
            )
        except AuthError:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.INVALID_TOKEN,
                    "Invalid session",
                ).model_dump(mode="json"),
            )

        actor = session.actor
        set_current_actor(actor)
        request.state.actor = actor
        request.state.session = session

        try:
            return await call_next(request)
        finally:
            clear_current_actor()
