"""Invoice models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    """Invoice payment status."""

    PAID = "paid"
    UNPAID = "unpaid"


class Invoice(BaseModel):
    """Invoice created once per completed service request."""

    id: UUID
    invoice_number: str
    service_request_id: UUID | None = None  # detached when the request is deleted
    payment_id: UUID
    customer_id: UUID
    garage_id: UUID
    subtotal_cents: int = Field(ge=0)
    additional_charges_cents: int = Field(0, ge=0)
    discount_cents: int = Field(0, ge=0)
    tax_rate_bps: int = Field(ge=0, le=10000)
    tax_amount_cents: int = Field(ge=0)
    total_amount_cents: int = Field(ge=0)
    status: InvoiceStatus
    issued_at: datetime
    paid_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID
