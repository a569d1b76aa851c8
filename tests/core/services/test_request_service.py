"""Tests for RequestService."""

import threading
from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest

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
from core.models import (
    CompletionRequest,
    InvoiceStatus,
    LedgerItemFinish,
    PaymentMethod,
    PaymentStatus,
    ServiceRequest,
    ServiceRequestStatus,
)
from support.world import (
    BRAKE_PADS_ID,
    BRAKE_PADS_PRICE,
    CLOSED_GARAGE_ID,
    CUSTOMER_ID,
    MECHANIC_B_ID,
    MECHANIC_ID,
    OIL_CHANGE_PRICE,
    OTHER_VEHICLE_ID,
    UNAPPROVED_MECHANIC_ID,
    item_data,
    request_data,
)


class TestCreate:
    """Tests for RequestService.create."""

    def test_creates_pending_request_without_mechanic(self, services, actors):
        request = services.requests.create(actors.customer, request_data())

        assert request.status == ServiceRequestStatus.PENDING
        assert request.mechanic_id is None
        assert request.customer_id == CUSTOMER_ID

    def test_audits_creation(self, services, actors, store):
        request = services.requests.create(actors.customer, request_data())

        history = services.audit.get_entity_history("service_request", request.id)
        assert [h["action"] for h in history] == ["create"]
        assert history[0]["actor_id"] == actors.customer.id

    def test_only_customers_create(self, services, actors):
        for actor in (actors.mechanic, actors.garage_admin, actors.system_admin):
            with pytest.raises(ForbiddenError):
                services.requests.create(actor, request_data())

    def test_vehicle_must_belong_to_customer(self, services, actors):
        with pytest.raises(NotFoundError):
            services.requests.create(actors.customer, request_data(vehicle_id=OTHER_VEHICLE_ID))

    def test_garage_must_be_active(self, services, actors):
        with pytest.raises(NotFoundError):
            services.requests.create(actors.customer, request_data(garage_id=CLOSED_GARAGE_ID))
        with pytest.raises(NotFoundError):
            services.requests.create(actors.customer, request_data(garage_id=uuid4()))

    def test_publishes_created_with_garage_recipients(self, services, published, actors):
        services.requests.create(actors.customer, request_data())

        created = [e for e in published if type(e).__name__ == "ServiceRequestCreated"]
        assert len(created) == 1
        assert set(created[0].mechanic_ids) == {MECHANIC_ID, MECHANIC_B_ID}
        assert UNAPPROVED_MECHANIC_ID not in created[0].mechanic_ids


class TestAccept:
    """Tests for RequestService.accept."""

    def test_mechanic_claims_for_themself(self, services, actors, pending_request):
        request = services.requests.accept(actors.mechanic, pending_request.id)

        assert request.status == ServiceRequestStatus.ACCEPTED
        assert request.mechanic_id == MECHANIC_ID

    def test_second_claim_is_refused(self, services, actors, accepted_request):
        with pytest.raises(RequestAlreadyClaimedError):
            services.requests.accept(actors.mechanic_b, accepted_request.id)

        assert services.store.get_service_request(accepted_request.id).mechanic_id == MECHANIC_ID

    def test_claim_on_stale_read_loses_the_compare_and_set(self, services, actors, pending_request, monkeypatch):
        """Both mechanics read PENDING; only the first write wins."""
        services.requests.accept(actors.mechanic, pending_request.id)
        monkeypatch.setattr(services.requests, "_load", lambda request_id: pending_request)

        with pytest.raises(RequestAlreadyClaimedError):
            services.requests.accept(actors.mechanic_b, pending_request.id)

        stored = services.store.get_service_request(pending_request.id)
        assert stored.mechanic_id == MECHANIC_ID

    def test_concurrent_claims_have_exactly_one_winner(self, services, actors, pending_request):
        barrier = threading.Barrier(2)

        def claim(actor):
            barrier.wait()
            try:
                return services.requests.accept(actor, pending_request.id)
            except RequestAlreadyClaimedError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(claim, [actors.mechanic, actors.mechanic_b]))

        winners = [r for r in results if isinstance(r, ServiceRequest)]
        losers = [r for r in results if isinstance(r, RequestAlreadyClaimedError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert services.store.get_service_request(pending_request.id).mechanic_id == winners[0].mechanic_id

    @pytest.mark.parametrize("who", ["unapproved_mechanic", "outside_mechanic", "customer", "other_garage_admin"])
    def test_outsiders_cannot_accept(self, services, actors, pending_request, who):
        with pytest.raises(ForbiddenError):
            services.requests.accept(getattr(actors, who), pending_request.id)

    def test_mechanic_cannot_assign_someone_else(self, services, actors, pending_request):
        with pytest.raises(InvalidError):
            services.requests.accept(actors.mechanic, pending_request.id, MECHANIC_B_ID)

    def test_garage_admin_assigns_a_member(self, services, actors, pending_request):
        request = services.requests.accept(actors.garage_admin, pending_request.id, MECHANIC_B_ID)

        assert request.mechanic_id == MECHANIC_B_ID

    def test_admin_must_name_an_active_member(self, services, actors, pending_request):
        with pytest.raises(InvalidError):
            services.requests.accept(actors.garage_admin, pending_request.id)
        with pytest.raises(InvalidError):
            services.requests.accept(actors.garage_admin, pending_request.id, UNAPPROVED_MECHANIC_ID)

    def test_cancelled_request_cannot_be_accepted(self, services, actors, pending_request):
        services.requests.cancel(actors.customer, pending_request.id)

        with pytest.raises(InvalidTransitionError):
            services.requests.accept(actors.mechanic, pending_request.id)

    def test_unknown_request(self, services, actors):
        with pytest.raises(NotFoundError):
            services.requests.accept(actors.mechanic, uuid4())


class TestBegin:
    """Tests for RequestService.begin."""

    def test_assigned_mechanic_begins(self, services, actors, accepted_request):
        request = services.requests.begin(actors.mechanic, accepted_request.id)
        assert request.status == ServiceRequestStatus.IN_PROGRESS
        assert request.mechanic_id == MECHANIC_ID

    def test_other_mechanic_cannot_begin(self, services, actors, accepted_request):
        with pytest.raises(ForbiddenError):
            services.requests.begin(actors.mechanic_b, accepted_request.id)

    def test_cannot_begin_twice(self, services, actors, in_progress_request):
        with pytest.raises(InvalidTransitionError):
            services.requests.begin(actors.mechanic, in_progress_request.id)


class TestCancel:
    """Tests for RequestService.cancel."""

    def test_customer_cancels_pending_with_default_reason(self, services, actors, pending_request):
        request = services.requests.cancel(actors.customer, pending_request.id, "   ")

        assert request.status == ServiceRequestStatus.CANCELLED
        assert request.cancel_reason == "No reason provided"

    def test_garage_admin_cancels_accepted_and_unassigns(self, services, actors, accepted_request):
        request = services.requests.cancel(actors.garage_admin, accepted_request.id, "No parts in stock")

        assert request.status == ServiceRequestStatus.CANCELLED
        assert request.mechanic_id is None
        assert request.cancel_reason == "No parts in stock"

    def test_cannot_cancel_in_progress(self, services, actors, in_progress_request):
        with pytest.raises(InvalidTransitionError):
            services.requests.cancel(actors.customer, in_progress_request.id)

        assert services.store.get_service_request(in_progress_request.id).status == ServiceRequestStatus.IN_PROGRESS

    def test_mechanics_and_strangers_cannot_cancel(self, services, actors, accepted_request):
        with pytest.raises(ForbiddenError):
            services.requests.cancel(actors.mechanic, accepted_request.id)
        with pytest.raises(ForbiddenError):
            services.requests.cancel(actors.other_customer, accepted_request.id)


class TestComplete:
    """Tests for RequestService.complete."""

    def test_completes_and_bills(self, services, actors, ready_request):
        result = services.requests.complete(actors.mechanic, ready_request.id)

        subtotal = OIL_CHANGE_PRICE + BRAKE_PADS_PRICE
        assert result.request.status == ServiceRequestStatus.COMPLETED
        assert result.request.mechanic_id == MECHANIC_ID
        assert result.invoice.subtotal_cents == subtotal
        assert result.invoice.tax_amount_cents == subtotal // 10
        assert result.invoice.total_amount_cents == subtotal + subtotal // 10
        assert result.invoice.status == InvoiceStatus.UNPAID
        assert result.invoice.invoice_number.startswith("INV-")
        assert result.invoice.invoice_number.endswith("-0001")
        assert result.payment.amount_cents == result.invoice.total_amount_cents
        assert result.payment.status == PaymentStatus.PENDING
        assert result.payment.method == PaymentMethod.CASH
        assert result.invoice.payment_id == result.payment.id

    def test_second_completion_is_refused_without_a_second_invoice(self, services, actors, completed, store):
        with pytest.raises(AlreadyCompletedError):
            services.requests.complete(actors.mechanic, completed.request.id)

        assert len(store.invoices) == 1
        assert len(store.payments) == 1

    def test_concurrent_completions_bill_once(self, services, actors, ready_request, store):
        barrier = threading.Barrier(2)

        def finish(actor):
            barrier.wait()
            try:
                return services.requests.complete(actor, ready_request.id)
            except AlreadyCompletedError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(finish, [actors.mechanic, actors.garage_admin]))

        assert sum(isinstance(r, AlreadyCompletedError) for r in results) == 1
        assert len(store.invoices) == 1

    def test_requires_a_status_update(self, services, actors, in_progress_request):
        with pytest.raises(LedgerIncompleteError, match="status update"):
            services.requests.complete(actors.mechanic, in_progress_request.id)

    def test_unfinished_item_blocks_completion(self, services, actors, status_update, store):
        services.ledger.add_item(actors.mechanic, status_update.id, item_data())

        with pytest.raises(LedgerIncompleteError, match="not all items finished"):
            services.requests.complete(actors.mechanic, status_update.service_request_id)

        assert store.get_service_request(status_update.service_request_id).status == ServiceRequestStatus.IN_PROGRESS
        assert store.invoices == {}

    def test_update_without_items_bills_zero(self, services, actors, status_update):
        result = services.requests.complete(actors.mechanic, status_update.service_request_id)

        assert result.invoice.total_amount_cents == 0

    def test_must_be_in_progress(self, services, actors, accepted_request):
        with pytest.raises(InvalidTransitionError):
            services.requests.complete(actors.mechanic, accepted_request.id)

    def test_customers_and_other_mechanics_cannot_complete(self, services, actors, ready_request):
        with pytest.raises(ForbiddenError):
            services.requests.complete(actors.customer, ready_request.id)
        with pytest.raises(ForbiddenError):
            services.requests.complete(actors.mechanic_b, ready_request.id)

    def test_garage_admin_completes_with_adjustments(self, services, actors, ready_request):
        result = services.requests.complete(actors.garage_admin, ready_request.id, CompletionRequest(
            payment_method=PaymentMethod.CARD,
            additional_charges_cents=500,
            discount_cents=1000,
        ))

        taxable = OIL_CHANGE_PRICE + BRAKE_PADS_PRICE + 500 - 1000
        assert result.invoice.total_amount_cents == taxable + taxable // 10
        assert result.payment.method == PaymentMethod.CARD

    def test_billing_failure_rolls_back_the_status_flip(self, services, actors, ready_request, store):
        with pytest.raises(InvalidError):
            services.requests.complete(
                actors.mechanic, ready_request.id, CompletionRequest(discount_cents=10**9)
            )

        assert store.get_service_request(ready_request.id).status == ServiceRequestStatus.IN_PROGRESS
        assert store.payments == {}
        assert store.invoices == {}

    def test_store_failure_mid_billing_rolls_back(self, services, actors, ready_request, store, monkeypatch):
        def broken_insert(invoice):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "insert_invoice", broken_insert)

        with pytest.raises(RuntimeError):
            services.requests.complete(actors.mechanic, ready_request.id)

        assert store.get_service_request(ready_request.id).status == ServiceRequestStatus.IN_PROGRESS
        assert store.payments == {}


class TestCompletionSummary:

    def test_preview_matches_what_completion_bills(self, services, actors, ready_request):
        summary = services.requests.completion_summary(actors.mechanic, ready_request.id)
        result = services.requests.complete(actors.mechanic, ready_request.id)

        assert summary.total_amount_cents == result.invoice.total_amount_cents
        assert summary.ongoing_total_cents == OIL_CHANGE_PRICE
        assert summary.additional_total_cents == BRAKE_PADS_PRICE
        assert summary.can_complete is True
        assert {line.service_name for line in summary.lines} == {"Oil change", "Brake pads"}

    def test_open_items_are_listed_but_not_billed(self, services, actors, status_update):
        services.ledger.add_item(actors.mechanic, status_update.id, item_data(BRAKE_PADS_ID))

        summary = services.requests.completion_summary(actors.mechanic, status_update.service_request_id)

        assert len(summary.lines) == 1
        assert summary.subtotal_cents == 0
        assert summary.all_finished is False
        assert summary.can_complete is False

    def test_customers_cannot_preview(self, services, actors, ready_request):
        with pytest.raises(ForbiddenError):
            services.requests.completion_summary(actors.customer, ready_request.id)

    def test_no_preview_for_closed_requests(self, services, actors, completed):
        with pytest.raises(InvalidTransitionError):
            services.requests.completion_summary(actors.mechanic, completed.request.id)


class TestReads:

    def test_get_checks_read_access(self, services, actors, pending_request):
        assert services.requests.get(actors.mechanic_b, pending_request.id).id == pending_request.id
        with pytest.raises(ForbiddenError):
            services.requests.get(actors.other_customer, pending_request.id)
        with pytest.raises(NotFoundError):
            services.requests.get(actors.customer, uuid4())

    def test_list_for_actor_by_role(self, services, actors, pending_request):
        assert [r.id for r in services.requests.list_for_actor(actors.customer)] == [pending_request.id]
        assert services.requests.list_for_actor(actors.other_customer) == []
        assert len(services.requests.list_for_actor(actors.mechanic_b)) == 1
        assert services.requests.list_for_actor(actors.outside_mechanic) == []
        assert services.requests.list_for_actor(actors.unapproved_mechanic) == []
        assert len(services.requests.list_for_actor(actors.garage_admin)) == 1
        assert services.requests.list_for_actor(actors.other_garage_admin) == []
        assert len(services.requests.list_for_actor(actors.system_admin)) == 1

    def test_list_respects_limit(self, services, actors):
        for _ in range(3):
            services.requests.create(actors.customer, request_data())

        assert len(services.requests.list_for_actor(actors.customer, limit=2)) == 2


class TestDelete:

    def test_open_requests_cannot_be_deleted(self, services, actors, pending_request):
        with pytest.raises(ConflictError) as exc:
            services.requests.delete(actors.customer, pending_request.id)
        assert exc.value.code == "REQUEST_STILL_OPEN"

    def test_cancelled_request_is_deleted(self, services, actors, pending_request, store):
        services.requests.cancel(actors.customer, pending_request.id)
        services.requests.delete(actors.customer, pending_request.id)

        assert store.get_service_request(pending_request.id) is None
        history = services.audit.get_entity_history("service_request", pending_request.id)
        assert history[0]["action"] == "delete"

    def test_unpaid_invoice_blocks_deletion(self, services, actors, completed):
        with pytest.raises(ConflictError) as exc:
            services.requests.delete(actors.customer, completed.request.id)
        assert exc.value.code == "UNPAID_INVOICE"

    def test_paid_billing_records_survive_detached(self, services, actors, completed, store):
        services.billing.settle_payment(actors.customer, completed.payment.id)
        services.requests.delete(actors.garage_admin, completed.request.id)

        assert store.get_service_request(completed.request.id) is None
        assert store.status_updates == {}
        assert store.ledger_items == {}
        invoice = store.get_invoice(completed.invoice.id)
        assert invoice.service_request_id is None
        assert invoice.status == InvoiceStatus.PAID

    def test_mechanics_cannot_delete(self, services, actors, completed):
        with pytest.raises(ForbiddenError):
            services.requests.delete(actors.mechanic, completed.request.id)
