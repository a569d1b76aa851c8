"""Tests for domain event models."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from core.events import (
    BillingEvent,
    DomainEvent,
    LedgerItemAdded,
    LedgerItemEvent,
    LedgerItemFinished,
    LedgerItemRemoved,
    PaymentStatusChanged,
    RequestAccepted,
    RequestCancelled,
    RequestEvent,
    RequestStarted,
    ServiceRequestCreated,
    StatusUpdatePosted,
    StatusUpdateReviewed,
    WorkflowEvent,
)
from core.models import (
    LedgerItem,
    LedgerItemKind,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ServiceRequest,
    ServiceRequestStatus,
    StatusUpdate,
)
from utils.timezone import now_utc


# =============================================================================
# FIXTURES — lightweight in-memory stubs, no store needed
# =============================================================================


@pytest.fixture
def _request():
    now = now_utc()
    return ServiceRequest(
        id=uuid4(), customer_id=uuid4(), garage_id=uuid4(), vehicle_id=uuid4(),
        mechanic_id=uuid4(), latitude=0.0, longitude=0.0,
        status=ServiceRequestStatus.IN_PROGRESS,
        created_at=now, updated_at=now,
    )


@pytest.fixture
def _update(_request):
    return StatusUpdate(
        id=uuid4(), service_request_id=_request.id, mechanic_id=_request.mechanic_id,
        description="Drained old oil", approved=False, created_at=now_utc(),
    )


@pytest.fixture
def _item(_update):
    now = now_utc()
    return LedgerItem(
        id=uuid4(), status_update_id=_update.id, service_id=uuid4(),
        kind=LedgerItemKind.ONGOING, expected_date=now + timedelta(days=1),
        unit_price_cents=4500, total_price_cents=4500,
        created_at=now, updated_at=now,
    )


@pytest.fixture
def _payment(_request):
    now = now_utc()
    return Payment(
        id=uuid4(), service_request_id=_request.id, customer_id=_request.customer_id,
        garage_id=_request.garage_id, amount_cents=4950, method=PaymentMethod.CASH,
        status=PaymentStatus.COMPLETED, transaction_id="TXN-1",
        created_at=now, updated_at=now,
    )


# =============================================================================
# CONSTRUCTION VIA .create() FACTORY
# =============================================================================


class TestRequestEventFactory:

    def test_created_carries_recipients_and_customer_as_actor(self, _request):
        admin_id = uuid4()
        mechanics = [uuid4(), uuid4()]

        event = ServiceRequestCreated.create(
            request=_request, garage_admin_id=admin_id, mechanic_ids=mechanics
        )

        assert event.request is _request
        assert event.actor_id == _request.customer_id
        assert event.garage_admin_id == admin_id
        assert event.mechanic_ids == tuple(mechanics)

    def test_accepted_and_started_store_request_by_identity(self, _request):
        for cls in (RequestAccepted, RequestStarted):
            event = cls.create(request=_request, actor_id=_request.mechanic_id)
            assert event.request is _request
            assert event.actor_id == _request.mechanic_id

    def test_cancelled_copies_reason_from_request(self, _request):
        cancelled = _request.model_copy(update={
            "status": ServiceRequestStatus.CANCELLED,
            "mechanic_id": None,
            "cancel_reason": "Found another garage",
        })

        event = RequestCancelled.create(
            request=cancelled,
            actor_id=cancelled.customer_id,
            cancelled_by_customer=True,
            previous_mechanic_id=_request.mechanic_id,
            garage_admin_id=None,
        )

        assert event.reason == "Found another garage"
        assert event.previous_mechanic_id == _request.mechanic_id
        assert event.cancelled_by_customer is True


class TestWorkflowEventFactory:

    def test_status_update_posted_uses_mechanic_as_actor(self, _update, _request):
        event = StatusUpdatePosted.create(update=_update, request=_request)

        assert event.update is _update
        assert event.request is _request
        assert event.actor_id == _update.mechanic_id

    def test_status_update_reviewed(self, _update, _request):
        event = StatusUpdateReviewed.create(update=_update, request=_request, actor_id=_request.customer_id)
        assert event.actor_id == _request.customer_id

    def test_ledger_events_carry_item_and_service_name(self, _item, _request):
        for cls in (LedgerItemAdded, LedgerItemFinished, LedgerItemRemoved):
            event = cls.create(
                item=_item, request=_request, service_name="Oil change", actor_id=_request.mechanic_id
            )
            assert type(event) is cls
            assert event.item is _item
            assert event.service_name == "Oil change"


class TestBillingEventFactory:

    def test_payment_status_changed(self, _payment):
        event = PaymentStatusChanged.create(
            payment=_payment, invoice=None, previous_status=PaymentStatus.PENDING, actor_id=uuid4()
        )

        assert event.payment is _payment
        assert event.previous_status == PaymentStatus.PENDING


# =============================================================================
# AUTO-GENERATED METADATA
# =============================================================================


class TestEventId:

    def test_is_valid_uuid4_string(self, _request):
        event = RequestAccepted.create(request=_request, actor_id=uuid4())
        parsed = UUID(event.event_id, version=4)
        assert str(parsed) == event.event_id

    def test_unique_across_events(self, _request):
        ids = {RequestAccepted.create(request=_request, actor_id=uuid4()).event_id for _ in range(10)}
        assert len(ids) == 10


class TestOccurredAt:

    def test_is_utc_and_bounded_by_wall_clock(self, _request):
        before = now_utc()
        event = RequestStarted.create(request=_request, actor_id=uuid4())
        after = now_utc()

        assert event.occurred_at.tzinfo == timezone.utc
        assert before <= event.occurred_at <= after


# =============================================================================
# IMMUTABILITY
# =============================================================================


class TestFrozenFields:

    def test_cannot_reassign_request(self, _request):
        event = RequestAccepted.create(request=_request, actor_id=uuid4())
        with pytest.raises(FrozenInstanceError):
            event.request = None

    def test_cannot_reassign_event_id(self, _request):
        event = RequestAccepted.create(request=_request, actor_id=uuid4())
        with pytest.raises(FrozenInstanceError):
            event.event_id = "tampered"

    def test_cannot_reassign_occurred_at(self, _request):
        event = RequestAccepted.create(request=_request, actor_id=uuid4())
        with pytest.raises(FrozenInstanceError):
            event.occurred_at = datetime(2020, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# INHERITANCE HIERARCHY
# =============================================================================


class TestInheritance:

    def test_request_events(self, _request):
        event = RequestAccepted.create(request=_request, actor_id=uuid4())
        assert isinstance(event, RequestEvent)
        assert isinstance(event, DomainEvent)
        assert not isinstance(event, WorkflowEvent)

    def test_ledger_events_are_workflow_events(self, _item, _request):
        event = LedgerItemAdded.create(item=_item, request=_request, service_name="x", actor_id=uuid4())
        assert isinstance(event, LedgerItemEvent)
        assert isinstance(event, WorkflowEvent)
        assert not isinstance(event, RequestEvent)

    def test_payment_events_are_billing_events(self, _payment):
        event = PaymentStatusChanged.create(
            payment=_payment, invoice=None, previous_status=PaymentStatus.PENDING, actor_id=None
        )
        assert isinstance(event, BillingEvent)
        assert isinstance(event, DomainEvent)
