"""
FastAPI application entry point.

Run with:
    uvicorn main:app

Secrets (database URL, Valkey URL) come from Vault, or from
FIXFLOW_DATABASE_URL / FIXFLOW_VALKEY_URL for local development.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.config import AuthConfig
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from core.config import CoreConfig
from core.container import Services, build_services

logger = logging.getLogger(__name__)


def create_app(
    services: Services | None = None,
    session_manager: SessionManager | None = None,
    auth_config: AuthConfig | None = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Wired services (built over PostgreSQL when omitted)
        session_manager: Session resolver (built over Valkey when omitted)
        auth_config: Session settings

    Returns:
        Configured FastAPI application
    """
    auth_config = auth_config or AuthConfig()

    if services is None:
        from clients.postgres_client import PostgresClient
        from clients.vault_client import get_database_url
        from core.store import PostgresStore

        store = PostgresStore(PostgresClient(get_database_url()))
        services = build_services(store, CoreConfig.from_env())

    if session_manager is None:
        from clients.valkey_client import ValkeyClient
        from clients.vault_client import get_valkey_url

        session_manager = SessionManager(ValkeyClient(get_valkey_url()), auth_config)

    app = FastAPI(title="fixflow")

    register_error_handlers(app)

    app.add_middleware(
        AuthMiddleware,
        session_manager=session_manager,
        cookie_name=auth_config.session_cookie_name,
    )
    # Added last so it wraps auth: error envelopes from auth carry the request id
    app.add_middleware(RequestIDMiddleware)

    service_map = services.as_dict()
    app.include_router(create_actions_router(service_map), prefix="/api")
    app.include_router(create_data_router(service_map), prefix="/api")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.state.services = services
    app.state.session_manager = session_manager
    return app


def _build_default_app() -> FastAPI:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("FIXFLOW_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return create_app()


if os.getenv("FIXFLOW_SKIP_APP_INIT") != "1":
    app = _build_default_app()
