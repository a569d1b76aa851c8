"""Ledger item (billable service line) models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class LedgerItemKind(str, Enum):
    """Whether the service was planned or discovered while working."""

    ONGOING = "ongoing"
    ADDITIONAL = "additional"


class LedgerItemCreate(BaseModel):
    """Data required to add a service to a status update."""

    service_id: UUID
    expected_date: datetime
    total_price_cents: int | None = Field(None, ge=0)  # None = catalog estimate
    kind: LedgerItemKind = LedgerItemKind.ONGOING


class LedgerItemFinish(BaseModel):
    """Mark an item finished (optionally correcting its price) or reopen it."""

    finished: bool
    total_price_cents: int | None = Field(None, ge=0)


class LedgerItem(BaseModel):
    """Full ledger item entity as stored."""

    id: UUID
    status_update_id: UUID
    service_id: UUID
    kind: LedgerItemKind
    expected_date: datetime
    unit_price_cents: int = Field(ge=0)
    total_price_cents: int = Field(ge=0)
    finished: bool = False
    finished_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
