"""
Ledger service: billable service lines under status updates.

Items are booked, finished and removed by the request's assigned mechanic
while the request is active. A service can be booked once per update
(unique index on status_update_id, service_id). Finished items cannot be
removed; the conditional delete in the store enforces it even under races.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Actor
from core.access import AccessGuard, AccessIntent
from core.audit import AuditLogger, AuditAction, compute_changes
from core.errors import (
    ConflictError,
    DuplicateLedgerItemError,
    InvalidError,
    LedgerItemFinishedError,
    NotFoundError,
)
from core.event_bus import EventBus
from core.events import LedgerItemAdded, LedgerItemFinished, LedgerItemRemoved
from core.ledger import compute_ledger_total
from core.models import (
    LedgerItem,
    LedgerItemCreate,
    LedgerItemFinish,
    ServiceRequest,
    StatusUpdate,
)
from utils.timezone import now_utc, to_utc

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for ledger item operations."""

    def __init__(self, store, guard: AccessGuard, audit: AuditLogger, event_bus: EventBus):
        self.store = store
        self.guard = guard
        self.audit = audit
        self.event_bus = event_bus

    def _load_update(self, update_id: UUID) -> tuple[StatusUpdate, ServiceRequest]:
        update = self.store.get_status_update(update_id)
        if update is None:
            raise NotFoundError(f"Status update {update_id} not found")
        request = self.store.get_service_request(update.service_request_id)
        if request is None:
            raise NotFoundError(f"Service request {update.service_request_id} not found")
        return update, request

    def _load_item(self, item_id: UUID) -> tuple[LedgerItem, ServiceRequest]:
        item = self.store.get_ledger_item(item_id)
        if item is None:
            raise NotFoundError(f"Ledger item {item_id} not found")
        _, request = self._load_update(item.status_update_id)
        return item, request

    def _require_writable(self, actor: Actor, resource, request: ServiceRequest) -> None:
        self.guard.require(actor, resource, AccessIntent.WRITE)
        self._require_active(actor, request)

    def _require_active(self, actor: Actor, request: ServiceRequest) -> None:
        self.guard.require_assigned_mechanic(actor, request)
        if not request.is_active:
            raise ConflictError(
                f"Cannot change the ledger of a request that is {request.status.value}",
                code="REQUEST_NOT_ACTIVE",
            )

    def _lock_request(self, actor: Actor, request_id: UUID) -> ServiceRequest:
        """
        Re-read and row-lock the owning request inside the open transaction.

        complete() takes the same lock, so a ledger write and the completion
        of its request are serialized; whichever runs second sees the other.
        """
        locked = self.store.get_service_request(request_id, for_update=True)
        if locked is None:
            raise NotFoundError(f"Service request {request_id} not found")
        self._require_active(actor, locked)
        return locked

    def _service_name(self, service_id: UUID) -> str:
        service = self.store.get_catalog_service(service_id)
        return service.name if service else "Unknown service"

    def add_item(self, actor: Actor, update_id: UUID, data: LedgerItemCreate) -> LedgerItem:
        """
        Book a catalog service under a status update.

        Args:
            actor: The assigned mechanic
            update_id: Status update UUID
            data: Service, expected date, price (defaults to the catalog estimate)

        Returns:
            Created item (unfinished)

        Raises:
            NotFoundError: Update, request or catalog service not found
            ForbiddenError: Actor is not the assigned mechanic
            ConflictError: Request not active
            DuplicateLedgerItemError: Service already booked under this update
            InvalidError: expected_date has no timezone
        """
        update, request = self._load_update(update_id)
        self._require_writable(actor, update, request)

        service = self.store.get_catalog_service(data.service_id)
        if service is None or service.removed:
            raise NotFoundError(f"Service {data.service_id} not found")

        try:
            expected_date = to_utc(data.expected_date, "expected_date")
        except ValueError as e:
            raise InvalidError(str(e)) from e

        price = data.total_price_cents
        if price is None:
            price = service.estimated_price_cents

        now = now_utc()
        with self.store.transaction():
            request = self._lock_request(actor, request.id)
            item = self.store.insert_ledger_item(LedgerItem(
                id=uuid4(),
                status_update_id=update.id,
                service_id=service.id,
                kind=data.kind,
                expected_date=expected_date,
                unit_price_cents=service.estimated_price_cents,
                total_price_cents=price,
                finished=False,
                finished_at=None,
                created_at=now,
                updated_at=now,
            ))
            if item is None:
                raise DuplicateLedgerItemError(
                    f"Service {service.name} is already booked under update {update_id}"
                )

            self.audit.log_change(
                entity_type="ledger_item",
                entity_id=item.id,
                action=AuditAction.CREATE,
                changes={"created": item.model_dump(mode="json")},
                actor_id=actor.id,
            )

        logger.info(f"Ledger item {item.id} ({service.name}) added to update {update_id}")
        self.event_bus.publish(LedgerItemAdded.create(
            item=item, request=request, service_name=service.name, actor_id=actor.id
        ))
        return item

    def finish_item(self, actor: Actor, item_id: UUID, data: LedgerItemFinish) -> LedgerItem:
        """
        Mark an item finished (optionally correcting its price) or reopen it.

        Args:
            actor: The assigned mechanic
            item_id: Ledger item UUID
            data: finished flag and optional corrected price

        Returns:
            Updated item

        Raises:
            NotFoundError: Item not found
            ForbiddenError: Actor is not the assigned mechanic
            ConflictError: Request not active
            InvalidError: Price given without an unfinished -> finished transition
        """
        item, request = self._load_item(item_id)
        self._require_writable(actor, item, request)

        with self.store.transaction():
            request = self._lock_request(actor, request.id)
            item = self.store.get_ledger_item(item_id)
            if item is None:
                raise NotFoundError(f"Ledger item {item_id} not found")

            becomes_finished = data.finished and not item.finished
            if data.total_price_cents is not None and not becomes_finished:
                raise InvalidError("Price can only be corrected when marking an item finished")

            if data.finished == item.finished:
                return item

            now = now_utc()
            price = data.total_price_cents if data.total_price_cents is not None else item.total_price_cents

            updated = self.store.update_ledger_item(
                item_id,
                finished=data.finished,
                total_price_cents=price,
                finished_at=now if data.finished else None,
                now=now,
            )
            if updated is None:
                raise NotFoundError(f"Ledger item {item_id} not found")

            self.audit.log_change(
                entity_type="ledger_item",
                entity_id=item_id,
                action=AuditAction.UPDATE,
                changes=compute_changes(item.model_dump(mode="json"), updated.model_dump(mode="json")),
                actor_id=actor.id,
            )

        logger.info(f"Ledger item {item_id} {'finished' if data.finished else 'reopened'}")
        if becomes_finished:
            self.event_bus.publish(LedgerItemFinished.create(
                item=updated,
                request=request,
                service_name=self._service_name(updated.service_id),
                actor_id=actor.id,
            ))
        return updated

    def remove_item(self, actor: Actor, item_id: UUID) -> None:
        """
        Remove an unfinished item.

        Raises:
            NotFoundError: Item not found
            ForbiddenError: Actor is not the assigned mechanic
            ConflictError: Request not active
            LedgerItemFinishedError: Item is finished
        """
        item, request = self._load_item(item_id)
        self._require_writable(actor, item, request)

        if item.finished:
            raise LedgerItemFinishedError(f"Ledger item {item_id} is finished and cannot be removed")

        with self.store.transaction():
            request = self._lock_request(actor, request.id)
            if not self.store.delete_unfinished_ledger_item(item_id):
                if self.store.get_ledger_item(item_id) is None:
                    raise NotFoundError(f"Ledger item {item_id} not found")
                raise LedgerItemFinishedError(
                    f"Ledger item {item_id} is finished and cannot be removed"
                )

            self.audit.log_change(
                entity_type="ledger_item",
                entity_id=item_id,
                action=AuditAction.DELETE,
                changes={"deleted": item.model_dump(mode="json")},
                actor_id=actor.id,
            )

        logger.info(f"Ledger item {item_id} removed")
        self.event_bus.publish(LedgerItemRemoved.create(
            item=item,
            request=request,
            service_name=self._service_name(item.service_id),
            actor_id=actor.id,
        ))

    def ledger_total(self, request_id: UUID) -> int:
        """
        Billable amount of a request: sum over finished items of all its updates.

        Args:
            request_id: Request UUID

        Returns:
            Total in cents
        """
        return compute_ledger_total(self.store.list_ledger_items_for_request(request_id))

    def get(self, actor: Actor, item_id: UUID) -> LedgerItem:
        """
        Get an item the actor may read.

        Raises:
            NotFoundError: Item not found
            ForbiddenError: Actor may not read the owning request
        """
        item, _ = self._load_item(item_id)
        self.guard.require(actor, item, AccessIntent.READ)
        return item

    def list_for_update(self, actor: Actor, update_id: UUID) -> list[LedgerItem]:
        update, _ = self._load_update(update_id)
        self.guard.require(actor, update, AccessIntent.READ)
        return self.store.list_ledger_items(update_id)

    def list_for_request(self, actor: Actor, request_id: UUID) -> list[LedgerItem]:
        request = self.store.get_service_request(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found")
        self.guard.require(actor, request, AccessIntent.READ)
        return self.store.list_ledger_items_for_request(request_id)
