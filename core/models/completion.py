"""Completion request, bill preview and completion outcome models."""

from uuid import UUID

from pydantic import BaseModel, Field

from core.models.invoice import Invoice
from core.models.ledger_item import LedgerItemKind
from core.models.payment import Payment, PaymentMethod
from core.models.service_request import ServiceRequest


class CompletionRequest(BaseModel):
    """Optional billing inputs supplied when completing a request."""

    payment_method: PaymentMethod | None = None  # None = configured default
    additional_charges_cents: int = Field(0, ge=0)
    discount_cents: int = Field(0, ge=0)
    notes: str | None = Field(None, max_length=2000)


class SummaryLine(BaseModel):
    """One ledger line in a bill preview."""

    item_id: UUID
    service_id: UUID
    service_name: str
    kind: LedgerItemKind
    total_price_cents: int
    finished: bool


class CompletionSummary(BaseModel):
    """Read-only bill preview for a request that has not been completed yet."""

    service_request_id: UUID
    lines: list[SummaryLine]
    ongoing_total_cents: int
    additional_total_cents: int
    subtotal_cents: int
    additional_charges_cents: int
    discount_cents: int
    tax_rate_bps: int
    tax_amount_cents: int
    total_amount_cents: int
    all_finished: bool
    can_complete: bool


class CompletionResult(BaseModel):
    """Outcome of completion: the completed request with its billing records."""

    request: ServiceRequest
    invoice: Invoice
    payment: Payment
