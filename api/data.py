"""GET /api/data — unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.ledger import compute_ledger_total
from utils.user_context import get_current_actor


VALID_TYPES = {
    "requests", "status_updates", "ledger", "summary",
    "invoices", "payments", "notifications",
}


def _parse_uuid(name: str, value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise ValueError(f"'{name}' must be a UUID, got {value!r}")


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    request_svc = services["request"]
    status_update_svc = services["status_update"]
    ledger_svc = services["ledger"]
    billing_svc = services["billing"]
    notification_svc = services["notification"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        request_id: str | None = Query(None),
        status_update_id: str | None = Query(None),
        unread_only: bool = Query(False),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        actor = get_current_actor()
        ids = {
            name: _parse_uuid(name, value)
            for name, value in (
                ("id", id), ("request_id", request_id), ("status_update_id", status_update_id)
            )
            if value
        }

        if type == "requests":
            return _handle_requests(request_svc, actor, ids, limit)

        if type == "status_updates":
            return _handle_status_updates(status_update_svc, actor, ids)

        if type == "ledger":
            return _handle_ledger(ledger_svc, actor, ids)

        if type == "summary":
            if "request_id" not in ids:
                raise ValueError("'summary' type requires 'request_id' parameter")
            summary = request_svc.completion_summary(actor, ids["request_id"])
            return success_response(summary.model_dump(mode="json")).model_dump(mode="json")

        if type == "invoices":
            return _handle_invoices(billing_svc, actor, ids, limit)

        if type == "payments":
            return _handle_payments(billing_svc, actor, ids, limit)

        if type == "notifications":
            page = notification_svc.list_for_receiver(actor, unread_only, limit, offset)
            return success_response(page.model_dump(mode="json")).model_dump(mode="json")

    return router


def _handle_requests(request_svc, actor, ids, limit):
    if "id" in ids:
        service_request = request_svc.get(actor, ids["id"])
        return success_response(service_request.model_dump(mode="json")).model_dump(mode="json")

    requests = request_svc.list_for_actor(actor, limit)
    return success_response(
        [r.model_dump(mode="json") for r in requests]
    ).model_dump(mode="json")


def _handle_status_updates(status_update_svc, actor, ids):
    if "id" in ids:
        update = status_update_svc.get(actor, ids["id"])
        return success_response(update.model_dump(mode="json")).model_dump(mode="json")

    if "request_id" in ids:
        updates = status_update_svc.list_for_request(actor, ids["request_id"])
        return success_response(
            [u.model_dump(mode="json") for u in updates]
        ).model_dump(mode="json")

    raise ValueError("'status_updates' type requires 'id' or 'request_id' parameter")


def _handle_ledger(ledger_svc, actor, ids):
    if "id" in ids:
        item = ledger_svc.get(actor, ids["id"])
        return success_response(item.model_dump(mode="json")).model_dump(mode="json")

    if "status_update_id" in ids:
        items = ledger_svc.list_for_update(actor, ids["status_update_id"])
    elif "request_id" in ids:
        items = ledger_svc.list_for_request(actor, ids["request_id"])
    else:
        raise ValueError("'ledger' type requires 'id', 'status_update_id' or 'request_id' parameter")

    return success_response({
        "items": [i.model_dump(mode="json") for i in items],
        "finished_total_cents": compute_ledger_total(items),
    }).model_dump(mode="json")


def _handle_invoices(billing_svc, actor, ids, limit):
    if "id" in ids:
        invoice = billing_svc.get_invoice(actor, ids["id"])
    elif "request_id" in ids:
        invoice = billing_svc.get_invoice_for_request(actor, ids["request_id"])
    else:
        invoices = billing_svc.list_invoices(actor, limit)
        return success_response(
            [i.model_dump(mode="json") for i in invoices]
        ).model_dump(mode="json")

    return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")


def _handle_payments(billing_svc, actor, ids, limit):
    if "id" in ids:
        payment = billing_svc.get_payment(actor, ids["id"])
        return success_response(payment.model_dump(mode="json")).model_dump(mode="json")

    payments = billing_svc.list_payments(actor, limit)
    return success_response(
        [p.model_dump(mode="json") for p in payments]
    ).model_dump(mode="json")
