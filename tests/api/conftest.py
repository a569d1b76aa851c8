"""API test fixtures — TestClients per actor over in-memory services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.exceptions import InvalidTokenError, SessionExpiredError
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from auth.types import Session
from utils.timezone import now_utc


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(actors):
    """Resolves the token "<actor name>" to that actor's session."""
    now = now_utc()

    def validate(token: str) -> Session:
        if token == "expired":
            raise SessionExpiredError("Session expired")
        actor = getattr(actors, token, None)
        if actor is None:
            raise InvalidTokenError("Session record is malformed")
        return Session(
            token=token,
            user_id=actor.id,
            role=actor.role,
            created_at=now,
            expires_at=now + timedelta(hours=24),
            last_activity_at=now,
        )

    mock = Mock(spec=SessionManager)
    mock.validate_session.side_effect = validate
    return mock


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(mock_session_manager, services):
    """FastAPI app with auth middleware, error handlers, and data/actions routes."""
    from api.data import create_data_router
    from api.actions import create_actions_router

    app = FastAPI()
    app.add_middleware(AuthMiddleware, session_manager=mock_session_manager)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services.as_dict()), prefix="/api")
    app.include_router(create_actions_router(services.as_dict()), prefix="/api")

    return app


@pytest.fixture
def client_for(app):
    """Factory: authenticated TestClient for the named actor."""

    def make(actor_name: str) -> TestClient:
        c = TestClient(app, raise_server_exceptions=False)
        c.cookies.set("session_token", actor_name)
        return c

    return make


@pytest.fixture
def customer_client(client_for):
    return client_for("customer")


@pytest.fixture
def mechanic_client(client_for):
    return client_for("mechanic")


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)
