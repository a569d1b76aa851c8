"""
Request service: the service-request lifecycle.

Handles create, accept, begin, cancel and complete. Every status change
goes through the transition table in core.lifecycle and is written as a
compare-and-set on the current status, so two actors racing on the same
request cannot both win.

Completion runs in one transaction with the request row locked: the status
flip and the billing records commit together or not at all.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Actor, Role
from core.access import AccessGuard, AccessIntent
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import CoreConfig
from core.errors import (
    AlreadyCompletedError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    InvalidTransitionError,
    LedgerIncompleteError,
    NotFoundError,
    RequestAlreadyClaimedError,
)
from core.event_bus import EventBus
from core.events import (
    RequestAccepted,
    RequestCancelled,
    RequestCompleted,
    RequestStarted,
    ServiceRequestCreated,
)
from core.ledger import summarize_ledger
from core.lifecycle import RequestAction, allowed_sources, next_status
from core.models import (
    ASSIGNED_STATUSES,
    CompletionRequest,
    CompletionResult,
    CompletionSummary,
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestStatus,
    SummaryLine,
)
from core.services.billing_service import BillingService
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class RequestService:
    """Service for service-request lifecycle operations."""

    def __init__(
        self,
        store,
        guard: AccessGuard,
        audit: AuditLogger,
        event_bus: EventBus,
        billing: BillingService,
        config: CoreConfig,
    ):
        self.store = store
        self.guard = guard
        self.audit = audit
        self.event_bus = event_bus
        self.billing = billing
        self.config = config

    def _load(self, request_id: UUID) -> ServiceRequest:
        request = self.store.get_service_request(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found")
        return request

    def _garage_admin_id(self, garage_id: UUID) -> UUID | None:
        garage = self.store.get_garage(garage_id)
        return garage.admin_id if garage else None

    def _audit_transition(self, actor: Actor, old: ServiceRequest, new: ServiceRequest) -> None:
        self.audit.log_change(
            entity_type="service_request",
            entity_id=new.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(old.model_dump(mode="json"), new.model_dump(mode="json")),
            actor_id=actor.id,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create(self, actor: Actor, data: ServiceRequestCreate) -> ServiceRequest:
        """
        Open a new service request.

        Args:
            actor: The requesting customer
            data: Garage, vehicle and location

        Returns:
            Created request in PENDING status

        Raises:
            ForbiddenError: Actor is not a customer
            NotFoundError: Vehicle missing or not the customer's; garage
                missing, unapproved or removed
        """
        if actor.role != Role.CUSTOMER:
            raise ForbiddenError("Only customers can create service requests")

        vehicle = self.store.get_vehicle(data.vehicle_id)
        if vehicle is None or vehicle.customer_id != actor.id:
            raise NotFoundError(f"Vehicle {data.vehicle_id} not found")

        garage = self.store.get_garage(data.garage_id)
        if garage is None or not garage.is_active:
            raise NotFoundError(f"Garage {data.garage_id} not found")

        now = now_utc()
        with self.store.transaction():
            request = self.store.insert_service_request(ServiceRequest(
                id=uuid4(),
                customer_id=actor.id,
                garage_id=garage.id,
                vehicle_id=vehicle.id,
                mechanic_id=None,
                latitude=data.latitude,
                longitude=data.longitude,
                description=data.description,
                status=ServiceRequestStatus.PENDING,
                cancel_reason=None,
                created_at=now,
                updated_at=now,
            ))

            self.audit.log_change(
                entity_type="service_request",
                entity_id=request.id,
                action=AuditAction.CREATE,
                changes={"created": data.model_dump(mode="json", exclude_none=True)},
                actor_id=actor.id,
            )

        logger.info(f"Service request {request.id} created for garage {garage.id}")

        self.event_bus.publish(ServiceRequestCreated.create(
            request=request,
            garage_admin_id=garage.admin_id,
            mechanic_ids=self.store.list_garage_mechanic_ids(garage.id),
        ))
        return request

    def accept(self, actor: Actor, request_id: UUID, mechanic_id: UUID | None = None) -> ServiceRequest:
        """
        Assign a mechanic to a pending request.

        A mechanic claims the request for themself. A garage admin (or
        system admin) assigns it to a named mechanic of the garage.

        Args:
            actor: Claiming mechanic or assigning admin
            request_id: Request UUID
            mechanic_id: Mechanic to assign (admins only)

        Returns:
            Request in ACCEPTED status

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not accept for this garage
            InvalidError: Missing or ineligible mechanic_id
            RequestAlreadyClaimedError: Request was no longer pending
        """
        request = self._load(request_id)

        if actor.role == Role.MECHANIC:
            membership = self.store.get_mechanic_membership(actor.id)
            if (
                membership is None
                or membership.garage_id != request.garage_id
                or not membership.is_active
            ):
                raise ForbiddenError(f"Mechanic {actor.id} does not work for this garage")
            if mechanic_id is not None and mechanic_id != actor.id:
                raise InvalidError("Mechanics can only accept requests for themselves")
            assignee = actor.id
        elif actor.role in (Role.GARAGE_ADMIN, Role.SYSTEM_ADMIN):
            self.guard.require(actor, request, AccessIntent.WRITE)
            if mechanic_id is None:
                raise InvalidError("mechanic_id is required when assigning a request")
            membership = self.store.get_mechanic_membership(mechanic_id)
            if (
                membership is None
                or membership.garage_id != request.garage_id
                or not membership.is_active
            ):
                raise InvalidError(f"Mechanic {mechanic_id} cannot be assigned to this garage")
            assignee = mechanic_id
        else:
            raise ForbiddenError("Customers cannot accept service requests")

        if request.status in ASSIGNED_STATUSES:
            raise RequestAlreadyClaimedError(f"Service request {request_id} was already accepted")
        next_status(request.status, RequestAction.ACCEPT)

        with self.store.transaction():
            updated = self.store.transition_service_request(
                request_id,
                from_statuses=allowed_sources(RequestAction.ACCEPT),
                to_status=ServiceRequestStatus.ACCEPTED,
                mechanic_id=assignee,
                now=now_utc(),
            )
            if updated is None:
                logger.warning(f"Lost accept race on request {request_id} (mechanic {assignee})")
                raise RequestAlreadyClaimedError(
                    f"Service request {request_id} was already accepted"
                )
            self._audit_transition(actor, request, updated)

        logger.info(f"Service request {request_id} accepted by mechanic {assignee}")
        self.event_bus.publish(RequestAccepted.create(request=updated, actor_id=actor.id))
        return updated

    def begin(self, actor: Actor, request_id: UUID) -> ServiceRequest:
        """
        Start work on an accepted request.

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor is not the assigned mechanic
            InvalidTransitionError: Request is not ACCEPTED
        """
        request = self._load(request_id)
        self.guard.require_assigned_mechanic(actor, request)
        next_status(request.status, RequestAction.BEGIN)

        with self.store.transaction():
            updated = self.store.transition_service_request(
                request_id,
                from_statuses=allowed_sources(RequestAction.BEGIN),
                to_status=ServiceRequestStatus.IN_PROGRESS,
                mechanic_id=request.mechanic_id,
                now=now_utc(),
            )
            if updated is None:
                raise InvalidTransitionError(
                    f"Service request {request_id} changed status concurrently"
                )
            self._audit_transition(actor, request, updated)

        logger.info(f"Service request {request_id} in progress")
        self.event_bus.publish(RequestStarted.create(request=updated, actor_id=actor.id))
        return updated

    def cancel(self, actor: Actor, request_id: UUID, reason: str | None = None) -> ServiceRequest:
        """
        Cancel a pending or accepted request.

        Args:
            actor: Owning customer, garage admin or system admin
            request_id: Request UUID
            reason: Shown to the other party; defaults to the configured text

        Returns:
            Request in CANCELLED status with no mechanic assigned

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not cancel this request
            InvalidTransitionError: Work already started or request closed
        """
        request = self._load(request_id)
        if actor.role == Role.MECHANIC:
            raise ForbiddenError("Mechanics cannot cancel service requests")
        self.guard.require(actor, request, AccessIntent.WRITE)
        next_status(request.status, RequestAction.CANCEL)

        reason = (reason or "").strip() or self.config.default_cancel_reason

        with self.store.transaction():
            updated = self.store.transition_service_request(
                request_id,
                from_statuses=allowed_sources(RequestAction.CANCEL),
                to_status=ServiceRequestStatus.CANCELLED,
                mechanic_id=None,
                cancel_reason=reason,
                now=now_utc(),
            )
            if updated is None:
                raise InvalidTransitionError(
                    f"Service request {request_id} changed status concurrently"
                )
            self._audit_transition(actor, request, updated)

        logger.info(f"Service request {request_id} cancelled by {actor.role.value}")
        self.event_bus.publish(RequestCancelled.create(
            request=updated,
            actor_id=actor.id,
            cancelled_by_customer=actor.role == Role.CUSTOMER,
            previous_mechanic_id=request.mechanic_id,
            garage_admin_id=self._garage_admin_id(request.garage_id),
        ))
        return updated

    def complete(
        self, actor: Actor, request_id: UUID, data: CompletionRequest | None = None
    ) -> CompletionResult:
        """
        Complete an in-progress request and bill it.

        Args:
            actor: Assigned mechanic, garage admin or system admin
            request_id: Request UUID
            data: Payment method and adjustments (defaults from config)

        Returns:
            CompletionResult with the completed request, invoice and payment

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not complete this request
            AlreadyCompletedError: Request was already completed
            InvalidTransitionError: Request is not IN_PROGRESS
            LedgerIncompleteError: No status update yet, or not all items finished
        """
        data = data or CompletionRequest()

        request = self._load(request_id)
        if actor.role == Role.CUSTOMER:
            raise ForbiddenError("Customers cannot complete service requests")
        self.guard.require(actor, request, AccessIntent.WRITE)

        with self.store.transaction():
            locked = self.store.get_service_request(request_id, for_update=True)
            if locked is None:
                raise NotFoundError(f"Service request {request_id} not found")
            if locked.status == ServiceRequestStatus.COMPLETED:
                raise AlreadyCompletedError(f"Service request {request_id} is already completed")
            next_status(locked.status, RequestAction.COMPLETE)

            if not self.store.list_status_updates(request_id):
                raise LedgerIncompleteError("at least one status update is required")

            items = self.store.list_ledger_items_for_request(request_id)
            if any(not item.finished for item in items):
                logger.warning(f"Completion of {request_id} refused: unfinished ledger items")
                raise LedgerIncompleteError("not all items finished")

            completed = self.store.transition_service_request(
                request_id,
                from_statuses=allowed_sources(RequestAction.COMPLETE),
                to_status=ServiceRequestStatus.COMPLETED,
                mechanic_id=locked.mechanic_id,
                now=now_utc(),
            )
            if completed is None:
                raise AlreadyCompletedError(f"Service request {request_id} is already completed")
            self._audit_transition(actor, locked, completed)

            invoice, payment = self.billing.finalize(completed, items, data, actor.id)

        logger.info(f"Service request {request_id} completed")
        self.event_bus.publish(RequestCompleted.create(
            request=completed,
            invoice=invoice,
            payment=payment,
            actor_id=actor.id,
            garage_admin_id=self._garage_admin_id(completed.garage_id),
        ))
        return CompletionResult(request=completed, invoice=invoice, payment=payment)

    # =========================================================================
    # READS
    # =========================================================================

    def completion_summary(
        self, actor: Actor, request_id: UUID, data: CompletionRequest | None = None
    ) -> CompletionSummary:
        """
        Preview the bill for a request that is still being worked.

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor is not the assigned mechanic or an admin
            InvalidTransitionError: Request is not ACCEPTED or IN_PROGRESS
            InvalidError: Discount exceeds the billable amount
        """
        request = self._load(request_id)
        if actor.role == Role.CUSTOMER:
            raise ForbiddenError("Customers cannot preview the bill")
        self.guard.require(actor, request, AccessIntent.WRITE)

        if not request.is_active:
            raise InvalidTransitionError(
                f"No bill preview for a request that is {request.status.value}"
            )

        items = self.store.list_ledger_items_for_request(request_id)
        names: dict[UUID, str] = {}
        for item in items:
            if item.service_id not in names:
                service = self.store.get_catalog_service(item.service_id)
                names[item.service_id] = service.name if service else "Unknown service"

        ledger = summarize_ledger(items)
        totals = self.billing.preview(items, data)
        has_updates = bool(self.store.list_status_updates(request_id))

        return CompletionSummary(
            service_request_id=request_id,
            lines=[
                SummaryLine(
                    item_id=item.id,
                    service_id=item.service_id,
                    service_name=names[item.service_id],
                    kind=item.kind,
                    total_price_cents=item.total_price_cents,
                    finished=item.finished,
                )
                for item in items
            ],
            ongoing_total_cents=ledger.ongoing_total_cents,
            additional_total_cents=ledger.additional_total_cents,
            subtotal_cents=totals.subtotal_cents,
            additional_charges_cents=totals.additional_charges_cents,
            discount_cents=totals.discount_cents,
            tax_rate_bps=totals.tax_rate_bps,
            tax_amount_cents=totals.tax_amount_cents,
            total_amount_cents=totals.total_amount_cents,
            all_finished=ledger.all_finished,
            can_complete=(
                request.status == ServiceRequestStatus.IN_PROGRESS
                and has_updates
                and ledger.all_finished
            ),
        )

    def get(self, actor: Actor, request_id: UUID) -> ServiceRequest:
        """
        Get a request the actor may read.

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not read it
        """
        request = self._load(request_id)
        self.guard.require(actor, request, AccessIntent.READ)
        return request

    def list_for_actor(self, actor: Actor, limit: int | None = None) -> list[ServiceRequest]:
        """
        Requests visible to the actor, newest first.

        Customers see their own, mechanics their garage's plus those assigned
        to them, garage admins their garages', system admins all.
        """
        limit = limit or self.config.list_limit

        if actor.role == Role.CUSTOMER:
            return self.store.list_requests_for_customer(actor.id, limit)

        if actor.role == Role.MECHANIC:
            membership = self.store.get_mechanic_membership(actor.id)
            garage_id = membership.garage_id if membership and membership.is_active else None
            return self.store.list_requests_for_mechanic(actor.id, garage_id, limit)

        if actor.role == Role.GARAGE_ADMIN:
            garage_ids = self.store.list_garage_ids_for_admin(actor.id)
            return self.store.list_requests_for_garages(garage_ids, limit)

        return self.store.list_all_requests(limit)

    # =========================================================================
    # DELETION
    # =========================================================================

    def delete(self, actor: Actor, request_id: UUID) -> None:
        """
        Hard-delete a closed request with its updates and ledger items.

        Paid billing records survive, detached from the request.

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not delete it
            ConflictError: Request still open, or its invoice is unpaid
        """
        request = self._load(request_id)
        if actor.role == Role.MECHANIC:
            raise ForbiddenError("Mechanics cannot delete service requests")
        self.guard.require(actor, request, AccessIntent.WRITE)

        with self.store.transaction():
            locked = self.store.get_service_request(request_id, for_update=True)
            if locked is None:
                raise NotFoundError(f"Service request {request_id} not found")
            if not locked.is_closed:
                raise ConflictError(
                    f"Cannot delete a request that is {locked.status.value}",
                    code="REQUEST_STILL_OPEN",
                )

            invoice = self.store.get_invoice_for_request(request_id)
            if invoice is not None and not invoice.is_paid:
                raise ConflictError(
                    f"Service request {request_id} has an unpaid invoice",
                    code="UNPAID_INVOICE",
                )

            self.store.delete_service_request(request_id)
            self.audit.log_change(
                entity_type="service_request",
                entity_id=request_id,
                action=AuditAction.DELETE,
                changes={"deleted": locked.model_dump(mode="json")},
                actor_id=actor.id,
            )

        logger.info(f"Service request {request_id} deleted by {actor.role.value}")
