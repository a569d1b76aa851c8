"""Tests for the application factory in main.py."""

import importlib

import pytest
from starlette.testclient import TestClient

from auth.config import AuthConfig
from support.http import act, data_of
from support.world import GARAGE_ID, VEHICLE_ID


@pytest.fixture
def main_module(monkeypatch):
    """Import main without building the default Postgres/Valkey-backed app."""
    monkeypatch.setenv("FIXFLOW_SKIP_APP_INIT", "1")
    return importlib.import_module("main")


@pytest.fixture
def app(main_module, services, mock_session_manager):
    return main_module.create_app(
        services=services,
        session_manager=mock_session_manager,
        auth_config=AuthConfig(session_cookie_name="fixflow_session"),
    )


class TestCreateApp:

    def test_health_is_public(self, app):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert data_of(response) == {"status": "ok"}
        assert "X-Request-ID" in response.headers

    def test_configured_cookie_name_is_used(self, app):
        client = TestClient(app, raise_server_exceptions=False)
        client.cookies.set("fixflow_session", "customer")

        response = act(client, "request", "create", **{
            "garage_id": str(GARAGE_ID),
            "vehicle_id": str(VEHICLE_ID),
            "latitude": 0,
            "longitude": 0,
        })

        assert response.status_code == 200

    def test_default_cookie_name_is_ignored(self, app):
        client = TestClient(app, raise_server_exceptions=False)
        client.cookies.set("session_token", "customer")

        response = client.get("/api/data", params={"type": "requests"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == response.json()["meta"]["request_id"]

    def test_state_exposes_wiring(self, app, services, mock_session_manager):
        assert app.state.services is services
        assert app.state.session_manager is mock_session_manager
