"""Shared test fixtures for the fixflow test suite."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env")

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.config import CoreConfig
from core.container import build_services
from core.models import LedgerItemFinish, LedgerItemKind, StatusUpdateCreate
from support.memory_store import InMemoryStore
from support.world import (
    BRAKE_PADS_ID,
    OIL_CHANGE_ID,
    Actors,
    item_data,
    make_actors,
    request_data,
    seed_reference_data,
)
from utils.user_context import clear_current_actor


# =============================================================================
# CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_current_actor()
    yield
    clear_current_actor()


# =============================================================================
# STORE & SERVICES
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    """In-memory store seeded with garages, mechanics, vehicles and catalog."""
    store = InMemoryStore()
    seed_reference_data(store)
    return store


@pytest.fixture
def config() -> CoreConfig:
    """10% tax so bill arithmetic is visible in assertions."""
    return CoreConfig(tax_rate_bps=1000)


@pytest.fixture
def services(store, config):
    return build_services(store, config)


@pytest.fixture
def actors() -> Actors:
    return make_actors()


@pytest.fixture
def published(services):
    """Every event published on the bus, in order."""
    from core.handlers.notification_handlers import _HANDLER_FACTORIES

    events = []
    for event_type in _HANDLER_FACTORIES:
        services.event_bus.subscribe(event_type, events.append)
    return events


# =============================================================================
# WORKFLOW FIXTURES
# =============================================================================


@pytest.fixture
def pending_request(services, actors):
    return services.requests.create(actors.customer, request_data())


@pytest.fixture
def accepted_request(services, actors, pending_request):
    return services.requests.accept(actors.mechanic, pending_request.id)


@pytest.fixture
def in_progress_request(services, actors, accepted_request):
    return services.requests.begin(actors.mechanic, accepted_request.id)


@pytest.fixture
def status_update(services, actors, in_progress_request):
    return services.status_updates.post(
        actors.mechanic, in_progress_request.id, StatusUpdateCreate(description="Replaced oil filter")
    )


@pytest.fixture
def ready_request(services, actors, in_progress_request, status_update):
    """In progress, one update, two finished items (ongoing oil change, additional brake pads)."""
    oil = services.ledger.add_item(actors.mechanic, status_update.id, item_data(OIL_CHANGE_ID))
    brakes = services.ledger.add_item(
        actors.mechanic, status_update.id,
        item_data(BRAKE_PADS_ID, kind=LedgerItemKind.ADDITIONAL),
    )
    services.ledger.finish_item(actors.mechanic, oil.id, LedgerItemFinish(finished=True))
    services.ledger.finish_item(actors.mechanic, brakes.id, LedgerItemFinish(finished=True))
    return in_progress_request


@pytest.fixture
def completed(services, actors, ready_request):
    """CompletionResult of the ready request."""
    return services.requests.complete(actors.mechanic, ready_request.id)
