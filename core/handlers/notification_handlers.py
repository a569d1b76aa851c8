"""
Handlers that turn domain events into notification rows.

Each factory captures the NotificationService at wiring time and returns
the handler callable. Handlers run after the publishing transaction has
committed. Each receiver is notified on its own: a failed write is logged
and the remaining receivers of the event are still notified.
"""

import logging
from typing import Callable
from uuid import UUID

from core.events import (
    DomainEvent,
    LedgerItemAdded,
    LedgerItemFinished,
    LedgerItemRemoved,
    PaymentStatusChanged,
    RequestAccepted,
    RequestCancelled,
    RequestCompleted,
    RequestStarted,
    ServiceRequestCreated,
    StatusUpdatePosted,
    StatusUpdateReviewed,
)
from core.models import LedgerItemKind, NotificationCreate, NotificationType

logger = logging.getLogger(__name__)


def _money(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def _send(
    notification_service,
    event: DomainEvent,
    receiver_id: UUID | None,
    type_: NotificationType,
    title: str,
    message: str,
) -> None:
    """Persist one notification; skips missing receivers and the acting user."""
    if receiver_id is None or receiver_id == event.actor_id:
        return
    try:
        notification_service.notify(NotificationCreate(
            sender_id=event.actor_id,
            receiver_id=receiver_id,
            type=type_,
            title=title,
            message=message,
        ))
    except Exception:
        logger.exception(
            "Failed to notify %s of %s (event_id=%s)",
            receiver_id, type(event).__name__, event.event_id,
        )


# =============================================================================
# REQUEST LIFECYCLE
# =============================================================================


def handle_request_created(notification_service) -> Callable:
    """
    Factory that returns a ServiceRequestCreated handler.

    Notifies the garage admin and every approved mechanic of the garage.
    """

    def handler(event: ServiceRequestCreated):
        request = event.request
        receivers = [event.garage_admin_id, *event.mechanic_ids]
        for receiver_id in dict.fromkeys(receivers):
            _send(
                notification_service, event, receiver_id,
                NotificationType.SERVICE_REQUEST,
                "New Service Request",
                "A customer has requested assistance. Please review the request.",
            )
        logger.debug(f"Fanned out request {request.id} to {len(receivers)} receivers")

    return handler


def handle_request_accepted(notification_service) -> Callable:
    """Factory that returns a RequestAccepted handler (notifies the customer)."""

    def handler(event: RequestAccepted):
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.REQUEST_ACCEPTED,
            "Service Request Accepted",
            "Your service request has been accepted and a mechanic has been assigned.",
        )

    return handler


def handle_request_started(notification_service) -> Callable:
    """Factory that returns a RequestStarted handler (notifies the customer)."""

    def handler(event: RequestStarted):
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.REQUEST_STARTED,
            "Service In Progress",
            "The mechanic has started working on your vehicle.",
        )

    return handler


def handle_request_cancelled(notification_service) -> Callable:
    """
    Factory that returns a RequestCancelled handler.

    Notifies the other party: a customer cancellation reaches the garage
    admin and the assigned mechanic; a garage-side cancellation reaches the
    customer and the assigned mechanic.
    """

    def handler(event: RequestCancelled):
        request = event.request
        if event.cancelled_by_customer:
            _send(
                notification_service, event, event.garage_admin_id,
                NotificationType.REQUEST_CANCELLED,
                "Service Request Cancelled",
                f"The customer cancelled their service request. Reason: {event.reason}",
            )
        else:
            _send(
                notification_service, event, request.customer_id,
                NotificationType.REQUEST_CANCELLED,
                "Service Request Cancelled",
                f"Your service request has been cancelled. Reason: {event.reason}",
            )
        _send(
            notification_service, event, event.previous_mechanic_id,
            NotificationType.REQUEST_CANCELLED,
            "Service Request Cancelled",
            f"A service request assigned to you has been cancelled. Reason: {event.reason}",
        )

    return handler


def handle_request_completed(notification_service) -> Callable:
    """
    Factory that returns a RequestCompleted handler.

    Tells the customer the work is done and the invoice is ready, and the
    garage admin that the request was closed.
    """

    def handler(event: RequestCompleted):
        request = event.request
        invoice = event.invoice
        total = _money(invoice.total_amount_cents)

        _send(
            notification_service, event, request.customer_id,
            NotificationType.SERVICE_COMPLETED,
            "Service Completed",
            f"The service on your vehicle is complete. Total amount: {total}.",
        )
        _send(
            notification_service, event, request.customer_id,
            NotificationType.INVOICE_GENERATED,
            "Invoice Generated",
            f"Invoice {invoice.invoice_number} for {total} has been generated.",
        )
        _send(
            notification_service, event, event.garage_admin_id,
            NotificationType.SERVICE_COMPLETED_ADMIN,
            "Service Request Completed",
            f"Service request {request.id} was completed. Invoice {invoice.invoice_number} ({total}).",
        )

    return handler


# =============================================================================
# STATUS UPDATES & LEDGER
# =============================================================================


def handle_status_update_posted(notification_service) -> Callable:
    """Factory that returns a StatusUpdatePosted handler (notifies the customer)."""

    def handler(event: StatusUpdatePosted):
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.STATUS_UPDATE,
            "Service Status Update",
            f'Your mechanic provided an update: "{event.update.description}". Please review it.',
        )

    return handler


def handle_status_update_reviewed(notification_service) -> Callable:
    """Factory that returns a StatusUpdateReviewed handler (notifies the mechanic)."""

    def handler(event: StatusUpdateReviewed):
        update = event.update
        if update.approved:
            title = "Status Update Approved"
            message = "The customer approved your status update."
        else:
            title = "Status Update Declined"
            message = "The customer declined your status update. Please contact them for clarification."
        _send(
            notification_service, event, update.mechanic_id,
            NotificationType.STATUS_APPROVAL, title, message,
        )

    return handler


def handle_ledger_item_added(notification_service) -> Callable:
    """
    Factory that returns a LedgerItemAdded handler.

    Only additional (unplanned) services are announced to the customer.
    """

    def handler(event: LedgerItemAdded):
        item = event.item
        if item.kind != LedgerItemKind.ADDITIONAL:
            return
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.SERVICE_ADDED,
            "Additional Service Required",
            f'Your vehicle needs "{event.service_name}" '
            f"(est. {_money(item.total_price_cents)}).",
        )

    return handler


def handle_ledger_item_finished(notification_service) -> Callable:
    """Factory that returns a LedgerItemFinished handler (notifies the customer)."""

    def handler(event: LedgerItemFinished):
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.SERVICE_FINISHED,
            "Service Finished",
            f'"{event.service_name}" has been completed on your vehicle.',
        )

    return handler


def handle_ledger_item_removed(notification_service) -> Callable:
    """Factory that returns a LedgerItemRemoved handler (notifies the customer)."""

    def handler(event: LedgerItemRemoved):
        _send(
            notification_service, event, event.request.customer_id,
            NotificationType.SERVICE_REMOVED,
            "Service Removed",
            f'"{event.service_name}" has been removed from your service request.',
        )

    return handler


# =============================================================================
# BILLING
# =============================================================================


def handle_payment_status_changed(notification_service) -> Callable:
    """Factory that returns a PaymentStatusChanged handler (notifies the customer)."""

    def handler(event: PaymentStatusChanged):
        payment = event.payment
        _send(
            notification_service, event, payment.customer_id,
            NotificationType.PAYMENT_STATUS_UPDATE,
            "Payment Status Updated",
            f"Your payment of {_money(payment.amount_cents)} is now {payment.status.value}.",
        )

    return handler


_HANDLER_FACTORIES = {
    "ServiceRequestCreated": handle_request_created,
    "RequestAccepted": handle_request_accepted,
    "RequestStarted": handle_request_started,
    "RequestCancelled": handle_request_cancelled,
    "RequestCompleted": handle_request_completed,
    "StatusUpdatePosted": handle_status_update_posted,
    "StatusUpdateReviewed": handle_status_update_reviewed,
    "LedgerItemAdded": handle_ledger_item_added,
    "LedgerItemFinished": handle_ledger_item_finished,
    "LedgerItemRemoved": handle_ledger_item_removed,
    "PaymentStatusChanged": handle_payment_status_changed,
}


def register_notification_handlers(event_bus, notification_service) -> None:
    """Subscribe every notification handler to its event."""
    for event_type, factory in _HANDLER_FACTORIES.items():
        event_bus.subscribe(event_type, factory(notification_service))
