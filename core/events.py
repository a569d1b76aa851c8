"""
Domain events for service-request coordination.

Immutable event objects that represent state changes. Services publish an
event only after the transaction that produced it has committed; handlers
react (today: by persisting notifications) without the publisher knowing
who's listening.

Event Categories:
- RequestEvent: Request lifecycle (create, accept, begin, cancel, complete)
- WorkflowEvent: Status updates and ledger items
- BillingEvent: Payment bookkeeping

Events carry the domain objects and the resolved recipients so handlers
don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Base class for all domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)
    actor_id: UUID | None = None


# =============================================================================
# REQUEST EVENTS
# =============================================================================


@dataclass(frozen=True)
class RequestEvent(DomainEvent):
    """Events related to service request lifecycle."""
    request: Any = None  # ServiceRequest, Any to avoid circular import


@dataclass(frozen=True)
class ServiceRequestCreated(RequestEvent):
    """A customer opened a request; the garage side must hear about it."""
    garage_admin_id: UUID | None = None
    mechanic_ids: tuple[UUID, ...] = ()

    @classmethod
    def create(
        cls, request: Any, garage_admin_id: UUID | None, mechanic_ids: list[UUID]
    ) -> "ServiceRequestCreated":
        return cls(
            request=request,
            actor_id=request.customer_id,
            garage_admin_id=garage_admin_id,
            mechanic_ids=tuple(mechanic_ids),
        )


@dataclass(frozen=True)
class RequestAccepted(RequestEvent):
    """A mechanic was assigned to the request."""

    @classmethod
    def create(cls, request: Any, actor_id: UUID) -> "RequestAccepted":
        return cls(request=request, actor_id=actor_id)


@dataclass(frozen=True)
class RequestStarted(RequestEvent):
    """The assigned mechanic began work."""

    @classmethod
    def create(cls, request: Any, actor_id: UUID) -> "RequestStarted":
        return cls(request=request, actor_id=actor_id)


@dataclass(frozen=True)
class RequestCancelled(RequestEvent):
    """The request was cancelled by the customer or the garage side."""
    cancelled_by_customer: bool = False
    previous_mechanic_id: UUID | None = None
    garage_admin_id: UUID | None = None
    reason: str = ""

    @classmethod
    def create(
        cls,
        request: Any,
        actor_id: UUID,
        cancelled_by_customer: bool,
        previous_mechanic_id: UUID | None,
        garage_admin_id: UUID | None,
    ) -> "RequestCancelled":
        return cls(
            request=request,
            actor_id=actor_id,
            cancelled_by_customer=cancelled_by_customer,
            previous_mechanic_id=previous_mechanic_id,
            garage_admin_id=garage_admin_id,
            reason=request.cancel_reason or "",
        )


@dataclass(frozen=True)
class RequestCompleted(RequestEvent):
    """The request was completed and billed."""
    invoice: Any = None
    payment: Any = None
    garage_admin_id: UUID | None = None

    @classmethod
    def create(
        cls, request: Any, invoice: Any, payment: Any, actor_id: UUID, garage_admin_id: UUID | None
    ) -> "RequestCompleted":
        return cls(
            request=request,
            invoice=invoice,
            payment=payment,
            actor_id=actor_id,
            garage_admin_id=garage_admin_id,
        )


# =============================================================================
# WORKFLOW EVENTS
# =============================================================================


@dataclass(frozen=True)
class WorkflowEvent(DomainEvent):
    """Events related to status updates and their ledger items."""
    request: Any = None


@dataclass(frozen=True)
class StatusUpdatePosted(WorkflowEvent):
    """The assigned mechanic posted a progress update."""
    update: Any = None

    @classmethod
    def create(cls, update: Any, request: Any) -> "StatusUpdatePosted":
        return cls(update=update, request=request, actor_id=update.mechanic_id)


@dataclass(frozen=True)
class StatusUpdateReviewed(WorkflowEvent):
    """The customer approved or rejected an update."""
    update: Any = None

    @classmethod
    def create(cls, update: Any, request: Any, actor_id: UUID) -> "StatusUpdateReviewed":
        return cls(update=update, request=request, actor_id=actor_id)


@dataclass(frozen=True)
class LedgerItemEvent(WorkflowEvent):
    """Events related to a single ledger item."""
    item: Any = None
    service_name: str = ""

    @classmethod
    def create(cls, item: Any, request: Any, service_name: str, actor_id: UUID):
        return cls(item=item, request=request, service_name=service_name, actor_id=actor_id)


@dataclass(frozen=True)
class LedgerItemAdded(LedgerItemEvent):
    """A service was booked under a status update."""


@dataclass(frozen=True)
class LedgerItemFinished(LedgerItemEvent):
    """A ledger item was marked finished."""


@dataclass(frozen=True)
class LedgerItemRemoved(LedgerItemEvent):
    """An unfinished ledger item was removed."""


# =============================================================================
# BILLING EVENTS
# =============================================================================


@dataclass(frozen=True)
class BillingEvent(DomainEvent):
    """Events related to payment bookkeeping."""
    payment: Any = None


@dataclass(frozen=True)
class PaymentStatusChanged(BillingEvent):
    """A payment record moved to a new status."""
    invoice: Any = None
    previous_status: Any = None

    @classmethod
    def create(
        cls, payment: Any, invoice: Any, previous_status: Any, actor_id: UUID
    ) -> "PaymentStatusChanged":
        return cls(
            payment=payment,
            invoice=invoice,
            previous_status=previous_status,
            actor_id=actor_id,
        )
