"""Payment bookkeeping models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How the customer pays."""

    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    INSURANCE = "insurance"


class PaymentStatus(str, Enum):
    """Payment record status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class Payment(BaseModel):
    """Payment record. Bookkeeping only, no gateway settlement."""

    id: UUID
    service_request_id: UUID | None = None
    customer_id: UUID
    garage_id: UUID
    amount_cents: int = Field(ge=0)
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: str
    paid_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
