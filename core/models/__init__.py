"""Core domain models."""

from core.models.garage import Garage, MechanicMembership
from core.models.vehicle import Vehicle
from core.models.catalog import CatalogService
from core.models.service_request import (
    ServiceRequest, ServiceRequestCreate, ServiceRequestStatus,
    ACTIVE_STATUSES, ASSIGNED_STATUSES, OPEN_STATUSES,
)
from core.models.status_update import StatusUpdate, StatusUpdateCreate
from core.models.ledger_item import LedgerItem, LedgerItemCreate, LedgerItemFinish, LedgerItemKind
from core.models.payment import Payment, PaymentMethod, PaymentStatus
from core.models.invoice import Invoice, InvoiceStatus
from core.models.completion import CompletionRequest, CompletionResult, CompletionSummary, SummaryLine
from core.models.notification import Notification, NotificationCreate, NotificationPage, NotificationType

__all__ = [
    # Reference data
    "Garage", "MechanicMembership", "Vehicle", "CatalogService",
    # ServiceRequest
    "ServiceRequest", "ServiceRequestCreate", "ServiceRequestStatus",
    "ACTIVE_STATUSES", "ASSIGNED_STATUSES", "OPEN_STATUSES",
    # StatusUpdate
    "StatusUpdate", "StatusUpdateCreate",
    # Ledger
    "LedgerItem", "LedgerItemCreate", "LedgerItemFinish", "LedgerItemKind",
    # Billing
    "Payment", "PaymentMethod", "PaymentStatus", "Invoice", "InvoiceStatus",
    # Completion
    "CompletionRequest", "CompletionResult", "CompletionSummary", "SummaryLine",
    # Notification
    "Notification", "NotificationCreate", "NotificationPage", "NotificationType",
]
