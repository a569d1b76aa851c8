"""
Access policy for service requests and everything they own.

`evaluate_access` is the single policy function over (actor, facts, intent).
It is pure: the facts it needs (the owning request, the garage's admin, the
actor's garage membership) are looked up by `AccessGuard` and passed in.

Rules, first match wins:
1. System admins may do anything.
2. On a request: the owning customer; the assigned mechanic; an approved,
   non-removed mechanic of the request's garage (read only); the admin of
   the request's garage.
3. On a status update or ledger item: the owning request's rule, except
   that a mechanic writing must be the assigned mechanic.
4. Nothing else.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union
from uuid import UUID

from auth.types import Actor, Role
from core.errors import ForbiddenError, NotFoundError
from core.models import (
    Invoice,
    LedgerItem,
    MechanicMembership,
    Payment,
    ServiceRequest,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

Resource = Union[ServiceRequest, StatusUpdate, LedgerItem]


class AccessIntent(str, Enum):
    """What the actor wants to do with the resource."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class AccessFacts:
    """Everything the policy needs to know about a request."""

    request: ServiceRequest
    garage_admin_id: UUID | None = None
    membership: MechanicMembership | None = None  # the actor's, when a mechanic


def evaluate_access(actor: Actor, facts: AccessFacts, intent: AccessIntent) -> bool:
    """
    Decide whether `actor` may act on the request described by `facts`.

    Write intent here means "mutate the request or its children"; the
    assigned-mechanic requirement for child writes falls out of the same
    rule, since garage-wide visibility is read only.
    """
    if actor.role == Role.SYSTEM_ADMIN:
        return True

    request = facts.request

    if actor.role == Role.CUSTOMER:
        return actor.id == request.customer_id

    if actor.role == Role.MECHANIC:
        if request.mechanic_id is not None and actor.id == request.mechanic_id:
            return True
        if intent == AccessIntent.READ:
            membership = facts.membership
            return (
                membership is not None
                and membership.user_id == actor.id
                and membership.garage_id == request.garage_id
                and membership.is_active
            )
        return False

    if actor.role == Role.GARAGE_ADMIN:
        return facts.garage_admin_id is not None and actor.id == facts.garage_admin_id

    return False


class AccessGuard:
    """
    Resolves resources to their owning request and applies the policy.

    `can_access` never raises on denial; `require` turns a denial into
    ForbiddenError for callers.
    """

    def __init__(self, store):
        self.store = store

    def _owning_request(self, resource: Resource) -> ServiceRequest:
        if isinstance(resource, ServiceRequest):
            return resource

        if isinstance(resource, LedgerItem):
            update = self.store.get_status_update(resource.status_update_id)
            if update is None:
                raise NotFoundError(f"Status update {resource.status_update_id} not found")
            resource = update

        request = self.store.get_service_request(resource.service_request_id)
        if request is None:
            raise NotFoundError(f"Service request {resource.service_request_id} not found")
        return request

    def facts_for(self, actor: Actor, request: ServiceRequest) -> AccessFacts:
        """Look up the store facts the policy needs, skipping what the role ignores."""
        garage_admin_id = None
        membership = None

        if actor.role == Role.GARAGE_ADMIN:
            garage = self.store.get_garage(request.garage_id)
            garage_admin_id = garage.admin_id if garage else None
        elif actor.role == Role.MECHANIC:
            membership = self.store.get_mechanic_membership(actor.id)

        return AccessFacts(request=request, garage_admin_id=garage_admin_id, membership=membership)

    def can_access(self, actor: Actor, resource: Resource, intent: AccessIntent) -> bool:
        """
        Whether `actor` may perform `intent` on `resource`.

        Args:
            actor: Authenticated identity
            resource: A ServiceRequest, StatusUpdate or LedgerItem
            intent: READ or WRITE

        Returns:
            True if allowed. Never raises on denial.
        """
        if actor.is_system_admin:
            return True

        try:
            request = self._owning_request(resource)
        except NotFoundError:
            return False

        return evaluate_access(actor, self.facts_for(actor, request), intent)

    def require(self, actor: Actor, resource: Resource, intent: AccessIntent) -> None:
        """
        Raise ForbiddenError unless `actor` may perform `intent` on `resource`.

        Raises:
            ForbiddenError: Access denied
        """
        if not self.can_access(actor, resource, intent):
            logger.warning(
                f"Access denied: {actor.role.value} {actor.id} "
                f"{intent.value} {type(resource).__name__} {resource.id}"
            )
            raise ForbiddenError(
                f"Not allowed to {intent.value} {type(resource).__name__} {resource.id}"
            )

    def can_access_billing(self, actor: Actor, record: Invoice | Payment) -> bool:
        """Invoices and payments: their customer, the admin of their garage, system admins."""
        if actor.is_system_admin:
            return True
        if actor.role == Role.CUSTOMER:
            return actor.id == record.customer_id
        if actor.role == Role.GARAGE_ADMIN:
            garage = self.store.get_garage(record.garage_id)
            return garage is not None and garage.admin_id == actor.id
        return False

    def require_billing(self, actor: Actor, record: Invoice | Payment) -> None:
        """
        Raise ForbiddenError unless `actor` may see the billing record.

        Raises:
            ForbiddenError: Access denied
        """
        if not self.can_access_billing(actor, record):
            logger.warning(
                f"Billing access denied: {actor.role.value} {actor.id} "
                f"{type(record).__name__} {record.id}"
            )
            raise ForbiddenError(f"Not allowed to read {type(record).__name__} {record.id}")

    def require_assigned_mechanic(self, actor: Actor, request: ServiceRequest) -> None:
        """
        Raise ForbiddenError unless `actor` is the request's assigned mechanic
        (or a system admin).

        Raises:
            ForbiddenError: Actor is not the assigned mechanic
        """
        if actor.is_system_admin:
            return
        if actor.role != Role.MECHANIC or actor.id != request.mechanic_id:
            logger.warning(f"{actor.role.value} {actor.id} is not assigned to request {request.id}")
            raise ForbiddenError(f"Only the assigned mechanic can work on request {request.id}")
