"""Service request (root aggregate) domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ServiceRequestStatus(str, Enum):
    """Service request lifecycle status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses in which a mechanic must be assigned
ASSIGNED_STATUSES = frozenset({
    ServiceRequestStatus.ACCEPTED,
    ServiceRequestStatus.IN_PROGRESS,
    ServiceRequestStatus.COMPLETED,
})

# Statuses in which mechanics may post updates and edit the ledger
ACTIVE_STATUSES = frozenset({
    ServiceRequestStatus.ACCEPTED,
    ServiceRequestStatus.IN_PROGRESS,
})

# Statuses that block deletion
OPEN_STATUSES = frozenset({
    ServiceRequestStatus.PENDING,
    ServiceRequestStatus.ACCEPTED,
    ServiceRequestStatus.IN_PROGRESS,
})


class ServiceRequestCreate(BaseModel):
    """Data a customer supplies to open a service request."""

    garage_id: UUID
    vehicle_id: UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    description: str | None = Field(None, max_length=2000)


class ServiceRequest(BaseModel):
    """Full service request entity as stored."""

    id: UUID
    customer_id: UUID
    garage_id: UUID
    vehicle_id: UUID
    mechanic_id: UUID | None = None
    latitude: float
    longitude: float
    description: str | None = None
    status: ServiceRequestStatus
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_assignment(self) -> "ServiceRequest":
        """A mechanic is assigned exactly while the request is being or has been worked."""
        assigned = self.status in ASSIGNED_STATUSES
        if assigned and self.mechanic_id is None:
            raise ValueError(f"Status {self.status.value} requires an assigned mechanic")
        if not assigned and self.mechanic_id is not None:
            raise ValueError(f"Status {self.status.value} cannot have an assigned mechanic")
        return self

    @property
    def is_active(self) -> bool:
        """Whether work (updates, ledger edits) may happen on this request."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_closed(self) -> bool:
        """Whether the request reached a terminal status."""
        return self.status not in OPEN_STATUSES
