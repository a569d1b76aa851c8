"""
Status update service: mechanic progress notes and customer approval.

Updates are append-only. The description is fixed at creation; only the
`approved` flag changes, and only by the owning customer (or a system
admin). Approval is advisory: it never blocks ledger edits.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Actor, Role
from core.access import AccessGuard, AccessIntent
from core.audit import AuditLogger, AuditAction
from core.errors import ConflictError, ForbiddenError, NotFoundError
from core.event_bus import EventBus
from core.events import StatusUpdatePosted, StatusUpdateReviewed
from core.models import ServiceRequest, StatusUpdate, StatusUpdateCreate
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class StatusUpdateService:
    """Service for status update operations."""

    def __init__(self, store, guard: AccessGuard, audit: AuditLogger, event_bus: EventBus):
        self.store = store
        self.guard = guard
        self.audit = audit
        self.event_bus = event_bus

    def _load_request(self, request_id: UUID) -> ServiceRequest:
        request = self.store.get_service_request(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found")
        return request

    @staticmethod
    def _require_postable(actor: Actor, request: ServiceRequest) -> None:
        if actor.role != Role.MECHANIC or actor.id != request.mechanic_id:
            raise ForbiddenError(f"Only the assigned mechanic can post updates on {request.id}")
        if not request.is_active:
            raise ConflictError(
                f"Cannot post updates on a request that is {request.status.value}",
                code="REQUEST_NOT_ACTIVE",
            )

    def _load(self, update_id: UUID) -> StatusUpdate:
        update = self.store.get_status_update(update_id)
        if update is None:
            raise NotFoundError(f"Status update {update_id} not found")
        return update

    def post(self, actor: Actor, request_id: UUID, data: StatusUpdateCreate) -> StatusUpdate:
        """
        Post a progress update on an accepted or in-progress request.

        Args:
            actor: The assigned mechanic
            request_id: Request UUID
            data: Update description

        Returns:
            Created update (not approved)

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor is not the assigned mechanic
            ConflictError: Request is not ACCEPTED or IN_PROGRESS
        """
        self._require_postable(actor, self._load_request(request_id))

        with self.store.transaction():
            # Same row lock as complete(): no update lands on a request completed meanwhile
            request = self.store.get_service_request(request_id, for_update=True)
            if request is None:
                raise NotFoundError(f"Service request {request_id} not found")
            self._require_postable(actor, request)

            update = self.store.insert_status_update(StatusUpdate(
                id=uuid4(),
                service_request_id=request.id,
                mechanic_id=actor.id,
                description=data.description,
                approved=False,
                created_at=now_utc(),
            ))

            self.audit.log_change(
                entity_type="status_update",
                entity_id=update.id,
                action=AuditAction.CREATE,
                changes={"created": data.model_dump(mode="json")},
                actor_id=actor.id,
            )

        logger.info(f"Status update {update.id} posted on request {request_id}")
        self.event_bus.publish(StatusUpdatePosted.create(update=update, request=request))
        return update

    def set_approval(self, actor: Actor, update_id: UUID, approved: bool) -> StatusUpdate:
        """
        Approve or reject an update.

        Args:
            actor: The request's customer, or a system admin
            update_id: Status update UUID
            approved: The decision

        Returns:
            Updated status update

        Raises:
            NotFoundError: Update not found
            ForbiddenError: Actor is not the request's customer
        """
        update = self._load(update_id)
        request = self._load_request(update.service_request_id)

        if not actor.is_system_admin and (
            actor.role != Role.CUSTOMER or actor.id != request.customer_id
        ):
            raise ForbiddenError(f"Only the request's customer can review update {update_id}")

        with self.store.transaction():
            updated = self.store.set_status_update_approval(update_id, approved)
            if updated is None:
                raise NotFoundError(f"Status update {update_id} not found")

            self.audit.log_change(
                entity_type="status_update",
                entity_id=update_id,
                action=AuditAction.UPDATE,
                changes={"approved": {"old": update.approved, "new": approved}},
                actor_id=actor.id,
            )

        logger.info(f"Status update {update_id} {'approved' if approved else 'rejected'}")
        self.event_bus.publish(StatusUpdateReviewed.create(
            update=updated, request=request, actor_id=actor.id
        ))
        return updated

    def get(self, actor: Actor, update_id: UUID) -> StatusUpdate:
        """
        Get an update the actor may read.

        Raises:
            NotFoundError: Update not found
            ForbiddenError: Actor may not read the owning request
        """
        update = self._load(update_id)
        self.guard.require(actor, update, AccessIntent.READ)
        return update

    def list_for_request(self, actor: Actor, request_id: UUID) -> list[StatusUpdate]:
        """
        All updates of a request, oldest first.

        Raises:
            NotFoundError: Request not found
            ForbiddenError: Actor may not read the request
        """
        request = self._load_request(request_id)
        self.guard.require(actor, request, AccessIntent.READ)
        return self.store.list_status_updates(request_id)
