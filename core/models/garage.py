"""Garage and mechanic membership models (read-only reference data)."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class Garage(BaseModel):
    """A garage that receives service requests."""

    id: UUID
    name: str
    admin_id: UUID
    approved: bool
    removed: bool = False
    available: bool = True
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        """Whether the garage can receive new requests."""
        return self.approved and not self.removed


class MechanicMembership(BaseModel):
    """A mechanic's membership in exactly one garage."""

    user_id: UUID
    garage_id: UUID
    approved: bool
    removed: bool = False
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        """Whether the mechanic may see and claim the garage's requests."""
        return self.approved and not self.removed
