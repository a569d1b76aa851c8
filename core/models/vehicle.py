"""Vehicle model (read-only reference data)."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class Vehicle(BaseModel):
    """A customer's registered vehicle."""

    id: UUID
    customer_id: UUID
    plate_number: str
    make: str | None = None
    model: str | None = None
    year: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
