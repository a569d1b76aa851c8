"""POST /api/actions — unified mutation endpoint."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    CompletionRequest,
    LedgerItemCreate,
    LedgerItemFinish,
    PaymentMethod,
    PaymentStatus,
    ServiceRequestCreate,
    StatusUpdateCreate,
)
from utils.user_context import get_current_actor


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict = {}


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "request": RequestHandler(services["request"]),
        "status_update": StatusUpdateHandler(services["status_update"]),
        "ledger": LedgerHandler(services["ledger"]),
        "notification": NotificationHandler(services["notification"]),
        "payment": PaymentHandler(services["billing"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        actor = get_current_actor()
        method = getattr(handler, f"_handle_{body.action}")
        result = method(actor, dict(body.data))
        return success_response(result).model_dump(mode="json")

    return router


def _uuid(data: dict, key: str = "id") -> UUID:
    """Required UUID field from action data."""
    value = data.get(key)
    if value is None:
        raise ValueError(f"'{key}' is required")
    try:
        return UUID(str(value))
    except ValueError:
        raise ValueError(f"'{key}' must be a UUID, got {value!r}")


def _uuid_list(data: dict, key: str = "ids") -> list[UUID] | None:
    """Optional list of UUIDs; absent means 'all'."""
    values = data.get(key)
    if values is None:
        return None
    if not isinstance(values, list):
        raise ValueError(f"'{key}' must be a list of UUIDs")
    try:
        return [UUID(str(v)) for v in values]
    except ValueError:
        raise ValueError(f"'{key}' must be a list of UUIDs")


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class RequestHandler:
    ALLOWED_ACTIONS = {"create", "accept", "begin", "cancel", "complete", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, actor, data: dict):
        request = self.service.create(actor, ServiceRequestCreate(**data))
        return request.model_dump(mode="json")

    def _handle_accept(self, actor, data: dict):
        mechanic_id = _uuid(data, "mechanic_id") if data.get("mechanic_id") else None
        request = self.service.accept(actor, _uuid(data), mechanic_id)
        return request.model_dump(mode="json")

    def _handle_begin(self, actor, data: dict):
        request = self.service.begin(actor, _uuid(data))
        return request.model_dump(mode="json")

    def _handle_cancel(self, actor, data: dict):
        request = self.service.cancel(actor, _uuid(data), data.get("reason"))
        return request.model_dump(mode="json")

    def _handle_complete(self, actor, data: dict):
        request_id = _uuid(data)
        data.pop("id")
        result = self.service.complete(actor, request_id, CompletionRequest(**data))
        return result.model_dump(mode="json")

    def _handle_delete(self, actor, data: dict):
        self.service.delete(actor, _uuid(data))
        return {"deleted": True}


class StatusUpdateHandler:
    ALLOWED_ACTIONS = {"post", "set_approval"}

    def __init__(self, service):
        self.service = service

    def _handle_post(self, actor, data: dict):
        request_id = _uuid(data, "request_id")
        data.pop("request_id")
        update = self.service.post(actor, request_id, StatusUpdateCreate(**data))
        return update.model_dump(mode="json")

    def _handle_set_approval(self, actor, data: dict):
        approved = data.get("approved")
        if not isinstance(approved, bool):
            raise ValueError("'approved' must be true or false")
        update = self.service.set_approval(actor, _uuid(data), approved)
        return update.model_dump(mode="json")


class LedgerHandler:
    ALLOWED_ACTIONS = {"add", "finish", "remove"}

    def __init__(self, service):
        self.service = service

    def _handle_add(self, actor, data: dict):
        update_id = _uuid(data, "status_update_id")
        data.pop("status_update_id")
        item = self.service.add_item(actor, update_id, LedgerItemCreate(**data))
        return item.model_dump(mode="json")

    def _handle_finish(self, actor, data: dict):
        item_id = _uuid(data)
        data.pop("id")
        item = self.service.finish_item(actor, item_id, LedgerItemFinish(**data))
        return item.model_dump(mode="json")

    def _handle_remove(self, actor, data: dict):
        self.service.remove_item(actor, _uuid(data))
        return {"deleted": True}


class NotificationHandler:
    ALLOWED_ACTIONS = {"mark_read", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_mark_read(self, actor, data: dict) -> dict[str, Any]:
        updated = self.service.mark_read(actor, _uuid_list(data))
        return {"updated": updated}

    def _handle_delete(self, actor, data: dict) -> dict[str, Any]:
        deleted = self.service.delete(actor, _uuid_list(data))
        return {"deleted": deleted}


class PaymentHandler:
    ALLOWED_ACTIONS = {"settle", "update_status"}

    def __init__(self, service):
        self.service = service

    def _handle_settle(self, actor, data: dict):
        method = PaymentMethod(data["method"]) if data.get("method") else None
        payment = self.service.settle_payment(actor, _uuid(data), method)
        return payment.model_dump(mode="json")

    def _handle_update_status(self, actor, data: dict):
        if not data.get("status"):
            raise ValueError("'status' is required")
        payment = self.service.update_payment_status(
            actor, _uuid(data), PaymentStatus(data["status"]), data.get("notes")
        )
        return payment.model_dump(mode="json")
