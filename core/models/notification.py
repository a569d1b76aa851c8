"""Notification models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Enumerated notification tags."""

    SERVICE_REQUEST = "service_request"
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_STARTED = "request_started"
    REQUEST_CANCELLED = "request_cancelled"
    STATUS_UPDATE = "status_update"
    STATUS_APPROVAL = "status_approval"
    SERVICE_ADDED = "service_added"
    SERVICE_FINISHED = "service_finished"
    SERVICE_REMOVED = "service_removed"
    SERVICE_COMPLETED = "service_completed"
    SERVICE_COMPLETED_ADMIN = "service_completed_admin"
    INVOICE_GENERATED = "invoice_generated"
    PAYMENT_STATUS_UPDATE = "payment_status_update"


class NotificationCreate(BaseModel):
    """Data required to persist a notification."""

    sender_id: UUID | None = None  # None = system
    receiver_id: UUID
    type: NotificationType
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)


class Notification(BaseModel):
    """Full notification entity as stored."""

    id: UUID
    sender_id: UUID | None = None
    receiver_id: UUID
    type: NotificationType
    title: str
    message: str
    read: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationPage(BaseModel):
    """A receiver's notifications with counts."""

    notifications: list[Notification]
    total: int
    unread: int
