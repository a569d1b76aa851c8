"""Status update (mechanic progress note) models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class StatusUpdateCreate(BaseModel):
    """Data a mechanic supplies to post a progress update."""

    description: str = Field(min_length=1, max_length=2000)


class StatusUpdate(BaseModel):
    """Full status update entity. Only `approved` is mutable."""

    id: UUID
    service_request_id: UUID
    mechanic_id: UUID
    description: str
    approved: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}
