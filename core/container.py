"""
Service wiring.

Builds the store-backed services, the event bus and the notification
handlers in one place so the API, tests and scripts share the same graph.
"""

import logging
from dataclasses import dataclass

from core.access import AccessGuard
from core.audit import AuditLogger
from core.config import CoreConfig
from core.event_bus import EventBus
from core.handlers.notification_handlers import register_notification_handlers
from core.services.billing_service import BillingService
from core.services.ledger_service import LedgerService
from core.services.notification_service import NotificationService
from core.services.request_service import RequestService
from core.services.status_update_service import StatusUpdateService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The wired service graph."""

    store: object
    event_bus: EventBus
    guard: AccessGuard
    audit: AuditLogger
    requests: RequestService
    status_updates: StatusUpdateService
    ledger: LedgerService
    billing: BillingService
    notifications: NotificationService

    def as_dict(self) -> dict:
        """Services keyed by API domain."""
        return {
            "request": self.requests,
            "status_update": self.status_updates,
            "ledger": self.ledger,
            "billing": self.billing,
            "notification": self.notifications,
        }


def build_services(store, config: CoreConfig | None = None, event_bus: EventBus | None = None) -> Services:
    """
    Wire every service over one store.

    Args:
        store: PostgresStore (or any object with the same methods)
        config: Business config (defaults to CoreConfig())
        event_bus: Bus to publish on (a new one by default)

    Returns:
        Services with notification handlers subscribed
    """
    config = config or CoreConfig()
    event_bus = event_bus or EventBus()

    guard = AccessGuard(store)
    audit = AuditLogger(store)
    notifications = NotificationService(store)
    billing = BillingService(store, guard, audit, event_bus, config)

    services = Services(
        store=store,
        event_bus=event_bus,
        guard=guard,
        audit=audit,
        requests=RequestService(store, guard, audit, event_bus, billing, config),
        status_updates=StatusUpdateService(store, guard, audit, event_bus),
        ledger=LedgerService(store, guard, audit, event_bus),
        billing=billing,
        notifications=notifications,
    )

    register_notification_handlers(event_bus, notifications)
    logger.info("Services wired")
    return services
