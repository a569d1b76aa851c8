"""Service catalog model (read-only reference data)."""

from uuid import UUID

from pydantic import BaseModel, Field


class CatalogService(BaseModel):
    """A billable service offered by garages."""

    id: UUID
    name: str
    estimated_price_cents: int = Field(ge=0)
    removed: bool = False

    model_config = {"from_attributes": True}
