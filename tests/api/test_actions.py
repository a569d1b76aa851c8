"""Tests for POST /api/actions unified mutation endpoint."""

from datetime import timedelta
from uuid import uuid4

from support.http import act, data_of, error_code
from support.world import (
    BRAKE_PADS_ID,
    GARAGE_ID,
    MECHANIC_B_ID,
    OIL_CHANGE_ID,
    VEHICLE_ID,
)
from utils.timezone import now_utc


def _create_payload(**overrides):
    payload = {
        "garage_id": str(GARAGE_ID),
        "vehicle_id": str(VEHICLE_ID),
        "latitude": -1.2921,
        "longitude": 36.8219,
        "description": "Engine light on",
    }
    payload.update(overrides)
    return payload


# =============================================================================
# AUTHENTICATION & VALIDATION
# =============================================================================


class TestActionsAuthentication:

    def test_unauthenticated_returns_401(self, unauthed_client):
        response = act(unauthed_client, "request", "create", **_create_payload())

        assert response.status_code == 401
        assert error_code(response) == "NOT_AUTHENTICATED"

    def test_expired_session_returns_401(self, client_for):
        response = act(client_for("expired"), "request", "create", **_create_payload())

        assert response.status_code == 401
        assert error_code(response) == "SESSION_EXPIRED"

    def test_unknown_token_returns_401(self, client_for):
        response = act(client_for("nobody"), "request", "create", **_create_payload())

        assert response.status_code == 401
        assert error_code(response) == "INVALID_TOKEN"

    def test_bearer_header_is_accepted(self, app):
        from starlette.testclient import TestClient

        client = TestClient(app, raise_server_exceptions=False)
        response = client.post(
            "/api/actions",
            json={"domain": "request", "action": "create", "data": _create_payload()},
            headers={"Authorization": "Bearer customer"},
        )

        assert response.status_code == 200


class TestActionsValidation:

    def test_missing_domain_returns_422(self, customer_client):
        response = customer_client.post("/api/actions", json={"action": "create", "data": {}})

        assert response.status_code == 422
        assert error_code(response) == "VALIDATION_ERROR"

    def test_unknown_domain_returns_400(self, customer_client):
        response = act(customer_client, "spaceship", "launch")

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "INVALID_REQUEST"
        assert "spaceship" in body["error"]["message"]

    def test_disallowed_action_returns_400(self, customer_client):
        response = act(customer_client, "request", "hack")

        assert response.status_code == 400
        assert "hack" in response.json()["error"]["message"]

    def test_model_validation_returns_422(self, customer_client):
        response = act(customer_client, "request", "create", **_create_payload(latitude=120))

        assert response.status_code == 422
        assert error_code(response) == "VALIDATION_ERROR"

    def test_malformed_id_returns_400(self, mechanic_client):
        response = act(mechanic_client, "request", "accept", id="not-a-uuid")

        assert response.status_code == 400
        assert "must be a UUID" in response.json()["error"]["message"]

    def test_missing_id_returns_400(self, mechanic_client):
        response = act(mechanic_client, "request", "begin")

        assert response.status_code == 400
        assert "'id' is required" in response.json()["error"]["message"]


# =============================================================================
# REQUEST LIFECYCLE
# =============================================================================


class TestRequestActions:

    def test_create_returns_pending_request(self, customer_client):
        response = act(customer_client, "request", "create", **_create_payload())

        assert response.status_code == 200
        data = data_of(response)
        assert data["status"] == "pending"
        assert data["mechanic_id"] is None
        assert data["garage_id"] == str(GARAGE_ID)

    def test_mechanic_cannot_create(self, mechanic_client):
        response = act(mechanic_client, "request", "create", **_create_payload())

        assert response.status_code == 403
        assert error_code(response) == "FORBIDDEN"

    def test_accept_then_second_accept_conflicts(self, mechanic_client, client_for, pending_request):
        first = act(mechanic_client, "request", "accept", id=str(pending_request.id))
        second = act(client_for("mechanic_b"), "request", "accept", id=str(pending_request.id))

        assert first.status_code == 200
        assert data_of(first)["status"] == "accepted"
        assert second.status_code == 409
        assert error_code(second) == "REQUEST_ALREADY_CLAIMED"

    def test_admin_assigns_named_mechanic(self, client_for, pending_request):
        response = act(
            client_for("garage_admin"), "request", "accept",
            id=str(pending_request.id), mechanic_id=str(MECHANIC_B_ID),
        )

        assert data_of(response)["mechanic_id"] == str(MECHANIC_B_ID)

    def test_cancel_with_reason(self, customer_client, accepted_request):
        response = act(customer_client, "request", "cancel", id=str(accepted_request.id), reason="Sold the car")

        data = data_of(response)
        assert data["status"] == "cancelled"
        assert data["cancel_reason"] == "Sold the car"
        assert data["mechanic_id"] is None

    def test_cancel_after_begin_returns_409(self, mechanic_client, customer_client, accepted_request):
        begin = act(mechanic_client, "request", "begin", id=str(accepted_request.id))
        cancel = act(customer_client, "request", "cancel", id=str(accepted_request.id))

        assert data_of(begin)["status"] == "in_progress"
        assert cancel.status_code == 409
        assert error_code(cancel) == "INVALID_STATUS_TRANSITION"

    def test_unknown_request_returns_404(self, mechanic_client):
        response = act(mechanic_client, "request", "accept", id=str(uuid4()))

        assert response.status_code == 404
        assert error_code(response) == "NOT_FOUND"

    def test_complete_returns_request_invoice_and_payment(self, mechanic_client, ready_request):
        response = act(
            mechanic_client, "request", "complete",
            id=str(ready_request.id), payment_method="card", discount_cents=500,
        )

        data = data_of(response)
        assert data["request"]["status"] == "completed"
        assert data["invoice"]["status"] == "unpaid"
        assert data["invoice"]["discount_cents"] == 500
        assert data["payment"]["method"] == "card"
        assert data["payment"]["amount_cents"] == data["invoice"]["total_amount_cents"]

    def test_incomplete_ledger_returns_409(self, mechanic_client, in_progress_request):
        response = act(mechanic_client, "request", "complete", id=str(in_progress_request.id))

        assert response.status_code == 409
        assert error_code(response) == "LEDGER_INCOMPLETE"

    def test_delete_with_unpaid_invoice_returns_409(self, customer_client, completed):
        response = act(customer_client, "request", "delete", id=str(completed.request.id))

        assert response.status_code == 409
        assert error_code(response) == "UNPAID_INVOICE"


# =============================================================================
# STATUS UPDATES & LEDGER
# =============================================================================


class TestStatusUpdateActions:

    def test_post_and_approve(self, mechanic_client, customer_client, in_progress_request):
        posted = act(
            mechanic_client, "status_update", "post",
            request_id=str(in_progress_request.id), description="Changed spark plugs",
        )
        update_id = data_of(posted)["id"]

        approved = act(customer_client, "status_update", "set_approval", id=update_id, approved=True)

        assert data_of(approved)["approved"] is True

    def test_approval_must_be_boolean(self, customer_client, status_update):
        response = act(customer_client, "status_update", "set_approval", id=str(status_update.id), approved="yes")

        assert response.status_code == 400

    def test_post_on_pending_request_is_forbidden(self, mechanic_client, pending_request):
        response = act(
            mechanic_client, "status_update", "post",
            request_id=str(pending_request.id), description="Too early",
        )

        assert response.status_code == 403


class TestLedgerActions:

    def _add(self, client, update_id, service_id=OIL_CHANGE_ID, **extra):
        return act(
            client, "ledger", "add",
            status_update_id=str(update_id),
            service_id=str(service_id),
            expected_date=(now_utc() + timedelta(days=1)).isoformat(),
            **extra,
        )

    def test_add_finish_remove(self, mechanic_client, status_update):
        oil = data_of(self._add(mechanic_client, status_update.id))
        brakes = data_of(self._add(mechanic_client, status_update.id, BRAKE_PADS_ID, kind="additional"))

        finished = act(mechanic_client, "ledger", "finish", id=oil["id"], finished=True, total_price_cents=4000)
        removed = act(mechanic_client, "ledger", "remove", id=brakes["id"])

        assert oil["total_price_cents"] == 4500
        assert data_of(finished)["total_price_cents"] == 4000
        assert data_of(removed) == {"deleted": True}

    def test_duplicate_returns_409(self, mechanic_client, status_update):
        self._add(mechanic_client, status_update.id)

        response = self._add(mechanic_client, status_update.id)

        assert response.status_code == 409
        assert error_code(response) == "LEDGER_ITEM_DUPLICATE"

    def test_removing_finished_item_returns_409(self, mechanic_client, ready_request, store):
        item = store.list_ledger_items_for_request(ready_request.id)[0]

        response = act(mechanic_client, "ledger", "remove", id=str(item.id))

        assert error_code(response) == "LEDGER_ITEM_FINISHED"


# =============================================================================
# NOTIFICATIONS & PAYMENTS
# =============================================================================


class TestNotificationActions:

    def test_mark_read_and_delete_all(self, client_for, pending_request):
        admin = client_for("garage_admin")

        marked = act(admin, "notification", "mark_read")
        deleted = act(admin, "notification", "delete")

        assert data_of(marked) == {"updated": 1}
        assert data_of(deleted) == {"deleted": 1}

    def test_ids_must_be_a_list(self, customer_client):
        response = act(customer_client, "notification", "mark_read", ids="everything")

        assert response.status_code == 400

    def test_empty_id_list_returns_400(self, customer_client):
        response = act(customer_client, "notification", "delete", ids=[])

        assert response.status_code == 400
        assert error_code(response) == "INVALID_REQUEST"


class TestPaymentActions:

    def test_customer_settles(self, customer_client, completed, store):
        response = act(customer_client, "payment", "settle", id=str(completed.payment.id), method="mobile_money")

        assert data_of(response)["status"] == "completed"
        assert store.get_invoice(completed.invoice.id).status.value == "paid"

    def test_admin_refund_requires_status(self, client_for, completed):
        response = act(client_for("system_admin"), "payment", "update_status", id=str(completed.payment.id))

        assert response.status_code == 400

    def test_mechanic_cannot_touch_payments(self, mechanic_client, completed):
        response = act(mechanic_client, "payment", "settle", id=str(completed.payment.id))

        assert response.status_code == 403
